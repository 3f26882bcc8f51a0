"""
Serializers for restaurant models.
"""
from rest_framework import serializers
from .models import Restaurant


class RestaurantMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested restaurant representation."""
    class Meta:
        model = Restaurant
        fields = ['uid', 'name', 'location']


class RestaurantStatusSerializer(serializers.ModelSerializer):
    class Meta:
        model = Restaurant
        fields = ['uid', 'name', 'is_online', 'notifications_enabled', 'updated_at']


class RestaurantStatusUpdateSerializer(serializers.Serializer):
    is_online = serializers.BooleanField()



class RestaurantVerificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Restaurant
        fields = [
            'uid', 'name', 'location', 'email',
            'verification_status', 'documents_submitted', 'submission_date',
            'verification_date', 'verification_notes', 'is_online', 'created_at',
        ]


class VerificationUpdateSerializer(serializers.Serializer):
    verification_status = serializers.CharField()
    verification_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
