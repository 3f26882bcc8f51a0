"""
Serializers for order models.
"""
from rest_framework import serializers
from .models import Order, OrderItem
from restaurants.serializers import RestaurantMinimalSerializer

PHONE_REGEX = r'^\+?[0-9]{10,15}$'


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with snapshot pricing."""
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'menu_item', 'item_name', 'quantity', 'unit_price', 'subtotal']


class OrderItemCreateSerializer(serializers.Serializer):
    """Serializer for creating order items in order creation request."""
    menu_item_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items.
    Uses prefetch_related for optimized queries.
    """
    restaurant = RestaurantMinimalSerializer(read_only=True)
    customer_uid = serializers.CharField(source='customer.uid', read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'restaurant', 'customer_uid', 'customer_name', 'phone_number',
            'delivery_address', 'latitude', 'longitude', 'location_accuracy',
            'payment_method', 'notes', 'total_price',
            'status', 'payment_status', 'response_deadline',
            'rejection_reason', 'auto_rejected', 'items',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /orders/

    Request format:
    {
        "customer_uid": "cust-1",
        "restaurant_uid": "rest-1",
        "items": [
            {"menu_item_id": 1, "quantity": 2}
        ],
        "delivery_address": "12 MG Road",
        "latitude": 12.97, "longitude": 77.59,
        "payment_method": "upi",
        "customer_name": "Asha",
        "phone_number": "+919876543210",
        "subtotal": "480.00",
        "total_amount": "529.00"
    }
    """
    customer_uid = serializers.CharField(max_length=255)
    restaurant_uid = serializers.CharField(max_length=255)
    items = OrderItemCreateSerializer(many=True)
    delivery_address = serializers.CharField()
    latitude = serializers.FloatField(min_value=-90, max_value=90, required=False, allow_null=True)
    longitude = serializers.FloatField(min_value=-180, max_value=180, required=False, allow_null=True)
    payment_method = serializers.CharField(max_length=50)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    customer_name = serializers.CharField(max_length=255)
    phone_number = serializers.RegexField(
        PHONE_REGEX,
        error_messages={'invalid': 'Invalid phone number format'}
    )
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")

        # Check for duplicate menu items
        item_ids = [item['menu_item_id'] for item in value]
        if len(item_ids) != len(set(item_ids)):
            raise serializers.ValidationError("Duplicate menu items in order items")

        return value


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class OrderAcceptSerializer(serializers.Serializer):
    restaurant_uid = serializers.CharField(max_length=255)


class OrderRejectSerializer(serializers.Serializer):
    restaurant_uid = serializers.CharField(max_length=255)
    reason = serializers.CharField()
