import uuid
from django.db import models
from django.db.models import Q


class FamilyMember(models.Model):
    RELATIONSHIP_CHOICES = [
        ('self', 'Self'),
        ('spouse', 'Spouse'),
        ('child', 'Child'),
        ('parent', 'Parent'),
        ('other', 'Other'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    name_key = models.CharField(max_length=200, db_index=True)
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    dob = models.DateField(blank=True, null=True)
    address = models.CharField(max_length=300, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    gender = models.CharField(max_length=20, blank=True)
    relationship = models.CharField(max_length=20, choices=RELATIONSHIP_CHOICES, default='other')
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'family_members'
        constraints = [
            models.UniqueConstraint(fields=['name_key', 'dob'], name='uniq_family_member_name_dob'),
            # NULL 在唯一约束里互不相等，DOB 缺失的情况单独约束
            models.UniqueConstraint(
                fields=['name_key'],
                condition=Q(dob__isnull=True),
                name='uniq_family_member_name_no_dob',
            ),
        ]


class Medicine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    strength = models.CharField(max_length=50, blank=True)
    form = models.CharField(max_length=50, blank=True)
    name_key = models.CharField(max_length=200)
    strength_key = models.CharField(max_length=50, blank=True)
    form_key = models.CharField(max_length=50, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'medicines'
        constraints = [
            models.UniqueConstraint(
                fields=['name_key', 'strength_key', 'form_key'],
                name='uniq_medicine_name_strength_form',
            ),
        ]

    def __str__(self):
        return ' '.join(part for part in (self.name, self.strength, self.form) if part)


class MedicationLog(models.Model):
    RECORDED_BY_CHOICES = [
        ('user', 'User'),
        ('caregiver', 'Caregiver'),
        ('automatic', 'Automatic'),
        ('import', 'Import'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    medicine = models.ForeignKey(Medicine, on_delete=models.PROTECT, related_name='logs')
    family_member = models.ForeignKey(FamilyMember, on_delete=models.CASCADE, related_name='medication_logs')
    fill_date = models.DateField()
    quantity = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    day_supply = models.PositiveIntegerField(blank=True, null=True)
    prescriber = models.CharField(max_length=200, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    rx_number = models.CharField(max_length=50, blank=True)
    ndc = models.CharField(max_length=20, blank=True)
    pharmacist = models.CharField(max_length=50, blank=True)
    insurance = models.CharField(max_length=100, blank=True)
    claim_reference = models.CharField(max_length=50, blank=True)
    generic = models.BooleanField(blank=True, null=True)
    source_format = models.CharField(max_length=30, blank=True)
    recorded_by = models.CharField(max_length=20, choices=RECORDED_BY_CHOICES, default='import')
    # Rx Number + fill date + FamilyMember id，重复导入靠它去重
    import_key = models.CharField(max_length=200, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'medication_logs'
        indexes = [
            models.Index(fields=['family_member', '-fill_date']),
        ]


class ImportJob(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    filename = models.CharField(max_length=255)
    payload = models.BinaryField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    report = models.JSONField(blank=True, null=True)
    error_code = models.CharField(max_length=50, blank=True)
    error_message = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'import_jobs'
