from django.urls import path

from .views import (
    AdminImportView,
    AdminSamplesView,
    AdminSyncView,
    BenchlingWebhookView,
    OrderApproveView,
    OrderDetailView,
    OrderReportsView,
    OrderSamplesView,
    OrderStatusView,
    OrderSubmitSamplesView,
    SampleReportView,
)

urlpatterns = [
    path('orders/<str:order_id>/', OrderDetailView.as_view(), name='order-detail'),
    path('orders/<str:order_id>/status', OrderStatusView.as_view(), name='order-status'),
    path('orders/<str:order_id>/approve', OrderApproveView.as_view(), name='order-approve'),
    path('orders/<str:order_id>/samples', OrderSamplesView.as_view(), name='order-samples'),
    path('orders/<str:order_id>/samples/submit', OrderSubmitSamplesView.as_view(), name='order-samples-submit'),
    path('orders/<str:order_id>/samples/<str:sample_name>/report', SampleReportView.as_view(),
         name='order-sample-report'),
    path('orders/<str:order_id>/reports', OrderReportsView.as_view(), name='order-reports'),
    path('admin/samples/benchling', AdminSamplesView.as_view(), name='admin-samples'),
    path('admin/samples/import', AdminImportView.as_view(), name='admin-samples-import'),
    path('admin/samples/sync', AdminSyncView.as_view(), name='admin-samples-sync'),
    path('webhooks/benchling', BenchlingWebhookView.as_view(), name='webhook-benchling'),
]
