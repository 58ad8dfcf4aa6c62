"""Practice application of the Doctic Care backend.

Models, serializers, views and route registrations for the practice
management API, the SaaS billing flow and realtime teleconsultation.
"""
