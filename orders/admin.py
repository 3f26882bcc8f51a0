"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['menu_item', 'item_name', 'quantity', 'unit_price', 'subtotal']
    can_delete = False

    def subtotal(self, obj):
        return f"₹{obj.subtotal}"
    subtotal.short_description = 'Subtotal'


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'restaurant', 'customer_name', 'status', 'payment_status',
        'total_price', 'auto_rejected', 'created_at'
    ]
    list_filter = ['status', 'payment_status', 'auto_rejected', 'created_at']
    search_fields = ['id', 'restaurant__name', 'customer_name', 'phone_number', 'payment_reference']
    ordering = ['-created_at']
    # Status moves only through the order services, never by hand.
    readonly_fields = [
        'status', 'payment_status', 'total_price', 'payment_reference',
        'gateway_order_id', 'payment_session_id', 'response_deadline',
        'rejection_reason', 'auto_rejected', 'created_at', 'updated_at'
    ]
    raw_id_fields = ['restaurant', 'customer']
    inlines = [OrderItemInline]

    def has_delete_permission(self, request, obj=None):
        return False
