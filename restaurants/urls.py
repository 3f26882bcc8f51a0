"""
URL routing for restaurant API endpoints.
"""
from django.urls import path
from . import views

app_name = 'restaurants'

urlpatterns = [
    path('restaurants/<str:uid>/status/', views.RestaurantStatusView.as_view(), name='restaurant-status'),
    path(
        'restaurants/<str:uid>/documents-submitted/',
        views.DocumentsSubmittedView.as_view(),
        name='restaurant-documents-submitted'
    ),
    path(
        'restaurants/<str:uid>/verification-status/',
        views.VerificationStatusView.as_view(),
        name='restaurant-verification-status'
    ),
    path(
        'admin/restaurants/pending-verification/',
        views.PendingVerificationListView.as_view(),
        name='admin-pending-verification'
    ),
    path(
        'admin/restaurants/all-with-status/',
        views.RestaurantVerificationOverviewView.as_view(),
        name='admin-restaurants-with-status'
    ),
    path(
        'admin/restaurants/<str:uid>/verification/',
        views.RestaurantVerificationView.as_view(),
        name='admin-restaurant-verification'
    ),
]
