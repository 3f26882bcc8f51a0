"""
Restaurant API Views.

Implements:
- PUT  /restaurants/{uid}/status/ - Toggle online status
- POST /restaurants/{uid}/documents-submitted/ - Record document submission
- GET  /restaurants/{uid}/verification-status/ - Verification state for login
- GET  /admin/restaurants/pending-verification/ - Admin review queue
- PUT  /admin/restaurants/{uid}/verification/ - Admin verify/reject
- GET  /admin/restaurants/all-with-status/ - Admin overview
"""
import logging
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .serializers import (
    RestaurantStatusSerializer,
    RestaurantStatusUpdateSerializer,
    RestaurantVerificationSerializer,
    VerificationUpdateSerializer,
)

logger = logging.getLogger(__name__)


class RestaurantStatusView(APIView):
    """
    PUT: Set a restaurant online or offline.

    Request Body:
    {
        "is_online": true
    }
    """

    def put(self, request, uid):
        serializer = RestaurantStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        restaurant = services.set_restaurant_online(uid, serializer.validated_data['is_online'])

        return Response({
            'success': True,
            'message': 'Restaurant status updated successfully',
            'data': {'restaurant': RestaurantStatusSerializer(restaurant).data},
        })


class DocumentsSubmittedView(APIView):
    """POST: Called once the restaurant has sent its verification documents."""

    def post(self, request, uid):
        services.record_documents_submitted(uid)
        return Response({
            'success': True,
            'message': 'Documents submission recorded successfully',
        })


class VerificationStatusView(APIView):
    """GET: Verification state, checked by the restaurant app at login."""

    def get(self, request, uid):
        return Response({
            'success': True,
            'data': services.get_verification_status(uid),
        })


class PendingVerificationListView(APIView):
    """GET: Restaurants waiting for an admin decision, oldest submission first."""

    def get(self, request):
        restaurants = services.list_pending_verification()
        return Response({
            'success': True,
            'data': {'restaurants': RestaurantVerificationSerializer(restaurants, many=True).data},
        })


class RestaurantVerificationView(APIView):
    """
    PUT: Admin decision on a restaurant's documents.

    Request Body:
    {
        "verification_status": "verified",
        "verification_notes": "FSSAI licence checked"
    }

    Returns:
        - 200: Decision recorded, restaurant notified
        - 400: Unknown decision or no documents submitted
        - 404: Restaurant not found
    """

    def put(self, request, uid):
        serializer = VerificationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        restaurant = services.update_verification(
            uid,
            serializer.validated_data['verification_status'],
            serializer.validated_data.get('verification_notes'),
        )
        return Response({
            'success': True,
            'message': f"Restaurant {restaurant.verification_status} successfully",
            'data': {'restaurant': RestaurantVerificationSerializer(restaurant).data},
        })


class RestaurantVerificationOverviewView(APIView):
    """
    GET: Every restaurant with its verification state, newest first.

    Query Parameters:
        - status: pending, verified or rejected
    """

    def get(self, request):
        restaurants = services.list_restaurants_with_status(request.query_params.get('status'))
        return Response({
            'success': True,
            'data': {'restaurants': RestaurantVerificationSerializer(restaurants, many=True).data},
        })
