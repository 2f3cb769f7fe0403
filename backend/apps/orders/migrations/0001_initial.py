import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('intent', models.CharField(choices=[('sample_only', 'Sample only'), ('sample_then_bulk', 'Sample then bulk'), ('direct_bulk', 'Direct bulk')], max_length=20)),
                ('lifecycle_state', models.CharField(choices=[('DRAFT', 'Draft'), ('SUBMITTED', 'Submitted'), ('ADMIN_APPROVED', 'Admin Approved'), ('MANUFACTURER_ASSIGNED', 'Manufacturer Assigned'), ('PAYMENT_REQUESTED', 'Payment Requested'), ('PAYMENT_CONFIRMED', 'Payment Confirmed'), ('SAMPLE_IN_PROGRESS', 'Sample In Progress'), ('SAMPLE_QC_UPLOADED', 'Sample QC Uploaded'), ('SAMPLE_APPROVED', 'Sample Approved'), ('BULK_UNLOCKED', 'Bulk Unlocked'), ('BULK_IN_PRODUCTION', 'Bulk In Production'), ('BULK_QC_UPLOADED', 'Bulk QC Uploaded'), ('READY_FOR_DISPATCH', 'Ready for Dispatch'), ('DISPATCHED', 'Dispatched'), ('DELIVERED', 'Delivered'), ('COMPLETED', 'Completed'), ('SAMPLE_COMPLETED', 'Sample Completed')], db_index=True, default='DRAFT', max_length=30)),
                ('payment_state', models.CharField(choices=[('initiated', 'Payment Pending'), ('held', 'In Escrow'), ('releasable', 'Ready for Release'), ('released', 'Released'), ('refunded', 'Refunded')], db_index=True, default='initiated', max_length=20)),
                ('product_type', models.CharField(blank=True, max_length=100)),
                ('fabric_type', models.CharField(blank=True, max_length=100)),
                ('color', models.CharField(blank=True, max_length=50)),
                ('quantity', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(100000)])),
                ('buyer_notes', models.TextField(blank=True, max_length=2000)),
                ('shipping_address', models.TextField(blank=True)),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('upfront_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='55% of the total, paid into escrow before production', max_digits=12)),
                ('final_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='45% of the total, settled on completion', max_digits=12)),
                ('courier_name', models.CharField(blank=True, max_length=100)),
                ('tracking_id', models.CharField(blank=True, max_length=100)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('admin_approved_at', models.DateTimeField(blank=True, null=True)),
                ('manufacturer_assigned_at', models.DateTimeField(blank=True, null=True)),
                ('payment_requested_at', models.DateTimeField(blank=True, null=True)),
                ('payment_confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('sample_started_at', models.DateTimeField(blank=True, null=True)),
                ('sample_qc_uploaded_at', models.DateTimeField(blank=True, null=True)),
                ('sample_approved_at', models.DateTimeField(blank=True, null=True)),
                ('bulk_unlocked_at', models.DateTimeField(blank=True, null=True)),
                ('bulk_started_at', models.DateTimeField(blank=True, null=True)),
                ('bulk_qc_uploaded_at', models.DateTimeField(blank=True, null=True)),
                ('ready_for_dispatch_at', models.DateTimeField(blank=True, null=True)),
                ('dispatched_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('payment_held_at', models.DateTimeField(blank=True, null=True)),
                ('payment_releasable_at', models.DateTimeField(blank=True, null=True)),
                ('payment_released_at', models.DateTimeField(blank=True, null=True)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('buyer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to=settings.AUTH_USER_MODEL)),
                ('manufacturer', models.ForeignKey(blank=True, help_text='Currently assigned manufacturer (at most one)', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='production_orders', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['buyer', 'lifecycle_state'], name='orders_buyer_state_idx'),
                    models.Index(fields=['manufacturer', 'lifecycle_state'], name='orders_mfg_state_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='QCRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('stage', models.CharField(choices=[('sample', 'Sample'), ('bulk', 'Bulk')], max_length=10)),
                ('round_number', models.PositiveIntegerField(default=1)),
                ('file_refs', models.JSONField(blank=True, default=list)),
                ('decision', models.CharField(blank=True, choices=[('approve', 'Approve'), ('reject', 'Reject')], max_length=10, null=True)),
                ('defect_type', models.CharField(blank=True, choices=[('none', 'No defect'), ('print_defect', 'Print defect'), ('stitching_defect', 'Stitching defect'), ('size_mismatch', 'Size mismatch'), ('color_mismatch', 'Color mismatch'), ('fabric_issue', 'Fabric issue'), ('packaging_issue', 'Packaging issue'), ('other', 'Other')], max_length=30, null=True)),
                ('defect_severity', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ('notes', models.TextField(blank=True)),
                ('admin_decision', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected')], db_index=True, default='pending', max_length=10)),
                ('admin_decided_at', models.DateTimeField(blank=True, null=True)),
                ('admin_notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('admin_decision_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='qc_decisions', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='qc_records', to='orders.order')),
                ('submitted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='qc_submissions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'QC Record',
                'verbose_name_plural': 'QC Records',
                'ordering': ['order', 'stage', 'round_number'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('admin_decision', 'pending')), fields=('order', 'stage'), name='unique_pending_qc_round'),
                    models.UniqueConstraint(fields=('order', 'stage', 'round_number'), name='unique_qc_round_number'),
                ],
            },
        ),
    ]
