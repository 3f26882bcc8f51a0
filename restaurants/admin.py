"""
Django Admin configuration for restaurant models.
"""
from django.contrib import admin
from .models import Restaurant, Category, MenuItem, Customer, DeviceToken


@admin.register(Restaurant)
class RestaurantAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'uid', 'name', 'is_online', 'notifications_enabled',
        'verification_status', 'documents_submitted', 'menu_item_count', 'created_at',
    ]
    list_filter = ['is_online', 'notifications_enabled', 'verification_status', 'documents_submitted', 'is_pure_veg']
    readonly_fields = ['submission_date', 'verification_date']
    search_fields = ['uid', 'name', 'email']
    ordering = ['name']

    def menu_item_count(self, obj):
        return obj.menu_items.filter(is_deleted=False).count()
    menu_item_count.short_description = 'Menu Items'


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'restaurant']
    search_fields = ['name', 'restaurant__name']
    raw_id_fields = ['restaurant']


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'restaurant', 'price', 'is_available', 'is_deleted']
    list_filter = ['is_available', 'is_deleted', 'is_veg']
    search_fields = ['name', 'restaurant__name']
    raw_id_fields = ['restaurant', 'category']


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ['id', 'uid', 'name', 'phone', 'created_at']
    search_fields = ['uid', 'name', 'phone', 'email']


@admin.register(DeviceToken)
class DeviceTokenAdmin(admin.ModelAdmin):
    list_display = ['id', 'restaurant', 'platform', 'created_at', 'last_used_at']
    search_fields = ['restaurant__uid', 'token']
    raw_id_fields = ['restaurant']
