"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<int:pk>/verify-payment/', views.VerifyPaymentView.as_view(), name='order-verify-payment'),
    path('orders/<int:pk>/accept/', views.OrderAcceptView.as_view(), name='order-accept'),
    path('orders/<int:pk>/reject/', views.OrderRejectView.as_view(), name='order-reject'),
    path('restaurants/<str:uid>/orders/', views.RestaurantOrderListView.as_view(), name='restaurant-orders'),
    path('payments/webhook/', views.PaymentWebhookView.as_view(), name='payment-webhook'),
]
