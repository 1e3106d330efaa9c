# gigaid_project/urls.py

from django.contrib import admin
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)
from core import views as core_views

router = DefaultRouter()
router.register(r'jobs', core_views.JobViewSet, basename='jobs')
router.register(r'bookings', core_views.BookingRequestViewSet, basename='bookings')

urlpatterns = [
    path('admin/', admin.site.urls),

    path('api/', include(router.urls)),

    # JWT auth
    path('api/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
]
