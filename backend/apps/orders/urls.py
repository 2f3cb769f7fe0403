"""
Order URL patterns.
"""
from django.urls import path
from apps.orders import views

app_name = 'orders'

urlpatterns = [
    # Order CRUD
    path('', views.OrderListCreateView.as_view(), name='list-create'),
    path('<uuid:pk>/', views.OrderDetailView.as_view(), name='detail'),
    path('<uuid:pk>/history/', views.OrderHistoryView.as_view(), name='history'),

    # Lifecycle
    path('<uuid:pk>/transitions/<slug:event>/', views.order_transition, name='transition'),
    path('<uuid:pk>/assignment/<slug:action>/', views.assignment_action, name='assignment'),
    path('<uuid:pk>/payment/<slug:action>/', views.payment_action, name='payment'),

    # QC rounds
    path('qc/<uuid:qc_id>/decide/', views.decide_qc, name='qc-decide'),
    path('qc/<uuid:qc_id>/assess/', views.assess_qc, name='qc-assess'),
]
