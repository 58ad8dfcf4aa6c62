from rest_framework import serializers


class CheckoutSerializer(serializers.Serializer):
    plan = serializers.CharField(max_length=32)
    billingPeriod = serializers.ChoiceField(choices=['monthly', 'annual'], required=False, default='monthly')
    email = serializers.EmailField(required=False, allow_blank=True)


class PortalSerializer(serializers.Serializer):
    customerId = serializers.CharField(max_length=64, required=False, allow_blank=True)


class UpgradeSerializer(serializers.Serializer):
    newPriceId = serializers.CharField(max_length=64)
    subscriptionId = serializers.CharField(max_length=64, required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    subscriptionId = serializers.CharField(max_length=64, required=False, allow_blank=True)
