"""
Integration tests: 完整导入流程打到真实数据库。

走完：
  bytes → Format Detector → Header Extractor + Row Tokenizer → Medication Parser
        → Reconciliation (ORM) → ImportReport

每个测试验证：report 的逐行结果 + 数据库里实际落库的实体。
"""
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError

from medrecords.exceptions import PatientHeaderNotFound, PatientNameMissing, UnrecognizedFormat
from medrecords.models import FamilyMember, Medicine, MedicationLog
from medrecords.services import import_pharmacy_records
from tests.conftest import FamilyMemberFactory, MedicationLogFactory, build_csv, build_xlsx


def outcome_codes(report):
    return [[m['code'] for m in o.messages] for o in report.outcomes]


# ===================================================================
# Happy path
# ===================================================================

@pytest.mark.django_db
class TestImportHappyPath:

    def test_three_rows_one_patient(self, labeled_csv):
        report = import_pharmacy_records(labeled_csv, 'john_smith.csv')

        assert FamilyMember.objects.count() == 1
        assert Medicine.objects.count() == 2          # Lisinopril 出现两次
        assert MedicationLog.objects.count() == 3

        member = FamilyMember.objects.get()
        assert member.name == 'John Smith'
        assert member.dob == date(1980, 1, 15)
        assert member.address == '123 Main St'
        assert str(report.family_member_id) == str(member.id)
        assert report.family_member_created is True

        summary = report.summary
        assert summary.rows_seen == 3
        assert summary.logs_created == 3
        assert summary.medicines_created == 2
        assert summary.medicines_reused == 0
        assert [o.status for o in report.outcomes] == ['created', 'created', 'created']
        assert report.format_kind == 'walgreens_csv'
        assert report.declared_total == 3

    def test_log_fields_persisted(self, labeled_csv):
        import_pharmacy_records(labeled_csv, 'john_smith.csv')

        log = MedicationLog.objects.get(rx_number='RX1002')
        assert log.fill_date == date(2024, 2, 5)
        assert log.quantity == Decimal('30')
        assert log.day_supply == 30
        assert log.prescriber == 'Dr. Adams'
        assert log.price == Decimal('12.50')
        assert log.recorded_by == 'import'
        assert log.source_format == 'walgreens_csv'
        assert str(log.medicine) == 'Atorvastatin 20mg Tablet'

    def test_positional_walgreens_export(self, positional_csv):
        report = import_pharmacy_records(positional_csv, 'Rune_Larsen.csv')

        member = FamilyMember.objects.get()
        assert member.name == 'Rune Larsen'
        assert member.gender == 'Male'
        assert member.phone == '5416062179'
        assert report.report_period == '09/08/2025 to 09/13/2025'
        assert report.summary.logs_created == 2

        log = MedicationLog.objects.get(rx_number='185848411643')
        assert log.ndc == '29300041510'
        assert log.pharmacist == 'SMM'
        assert log.insurance == 'APM'
        assert log.claim_reference == '252514899525277999'
        assert log.medicine.form == 'Tablet'

    def test_spreadsheet_export(self, walgreens_xlsx):
        report = import_pharmacy_records(walgreens_xlsx, 'jane.xlsx')

        assert report.format_kind == 'walgreens_spreadsheet'
        assert report.summary.logs_created == 2
        assert report.summary.medicines_created == 1
        assert Medicine.objects.get().name == 'Metformin'
        assert MedicationLog.objects.filter(price=Decimal('3.50')).count() == 2

    def test_existing_member_and_medicine_reused(self, labeled_csv):
        import_pharmacy_records(build_csv('01/01/2023,Lisinopril 10mg,RX0999,30,30,Dr. Adams,$4.00'), 'old.csv')

        report = import_pharmacy_records(labeled_csv, 'john_smith.csv')

        assert report.family_member_created is False
        assert report.summary.medicines_reused == 1
        assert report.summary.medicines_created == 1
        assert FamilyMember.objects.count() == 1


# ===================================================================
# Duplicate detection
# ===================================================================

@pytest.mark.django_db
class TestDuplicateDetection:

    def test_reimport_is_idempotent(self, labeled_csv):
        import_pharmacy_records(labeled_csv, 'john_smith.csv')

        second = import_pharmacy_records(labeled_csv, 'john_smith.csv')

        assert MedicationLog.objects.count() == 3
        assert second.summary.logs_created == 0
        assert second.summary.duplicates == 3
        assert all(o.status == 'duplicate' for o in second.outcomes)
        assert second.family_member_created is False

    def test_previously_recorded_fill_skipped(self, labeled_csv):
        member = FamilyMemberFactory()
        existing = MedicationLogFactory(family_member=member, rx_number='RX1001', fill_date=date(2024, 1, 5))

        report = import_pharmacy_records(labeled_csv, 'john_smith.csv')

        first = report.outcomes[0]
        assert first.status == 'duplicate'
        assert first.medication_log_id == str(existing.id)
        assert report.summary.logs_created == 2
        assert MedicationLog.objects.count() == 3

    def test_quantity_not_part_of_key(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            '01/05/2024,Lisinopril 10mg,RX1001,90,90,Dr. Adams,$9.00',
        )
        report = import_pharmacy_records(raw, 'dupes.csv')

        assert [o.status for o in report.outcomes] == ['created', 'duplicate']
        assert MedicationLog.objects.get().quantity == Decimal('30')

    def test_same_rx_different_patient_not_duplicate(self, labeled_csv):
        import_pharmacy_records(labeled_csv, 'john_smith.csv')
        other = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            patient_lines=['Patient Name:,Mary Smith,,,,,', 'Date of Birth:,02/02/1982,,,,,'],
        )

        report = import_pharmacy_records(other, 'mary.csv')

        assert report.summary.logs_created == 1
        assert FamilyMember.objects.count() == 2


# ===================================================================
# Row-level failures
# ===================================================================

@pytest.mark.django_db
class TestRowLevelFailures:

    def test_empty_drug_name_does_not_abort(self):
        raw = build_csv(
            '01/05/2024,,RX1001,30,30,Dr. Adams,$4.00',
            '02/05/2024,Atorvastatin 20mg Tablet,RX1002,30,30,Dr. Adams,$12.50',
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert [o.status for o in report.outcomes] == ['error', 'created']
        assert outcome_codes(report)[0] == ['MISSING_DRUG_NAME']
        assert MedicationLog.objects.count() == 1

    def test_malformed_fill_date_is_warning(self):
        raw = build_csv(
            '2024/99/99,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            '02/05/2024,Atorvastatin 20mg Tablet,RX1002,30,30,Dr. Adams,$12.50',
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert report.outcomes[0].status == 'warning'
        assert report.outcomes[0].created is False
        assert outcome_codes(report)[0] == ['MALFORMED_FILL_DATE']
        assert report.summary.rows_seen == 2
        assert MedicationLog.objects.count() == 1

    def test_missing_strength_created_with_warning(self):
        report = import_pharmacy_records(build_csv('01/05/2024,Hydrocortisone Cream,RX1,1,30,Dr. Adams,$3.00'), 'j.csv')

        outcome = report.outcomes[0]
        assert outcome.status == 'warning'
        assert outcome.created is True
        assert outcome_codes(report)[0] == ['MISSING_STRENGTH']
        assert Medicine.objects.get().strength == ''

    def test_validation_failure_rolls_back_row_only(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,99999999999,30,Dr. Adams,$4.00',
            '02/05/2024,Atorvastatin 20mg Tablet,RX1002,30,30,Dr. Adams,$12.50',
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert report.outcomes[0].status == 'error'
        assert outcome_codes(report)[0] == ['ROW_VALIDATION_FAILED']
        assert 'quantity' in report.outcomes[0].messages[0]['detail']
        # 失败行里新建的 Medicine 随行事务一起回滚
        assert list(Medicine.objects.values_list('name', flat=True)) == ['Atorvastatin']
        assert MedicationLog.objects.count() == 1

    def test_database_error_recorded(self, labeled_csv):
        with patch('medrecords.services.resolve_medicine', side_effect=DatabaseError('deadlock')):
            report = import_pharmacy_records(labeled_csv, 'john.csv')

        assert report.summary.errors == 3
        assert all(codes == ['ROW_PERSISTENCE_FAILED'] for codes in outcome_codes(report))
        assert MedicationLog.objects.count() == 0
        assert FamilyMember.objects.count() == 0

    def test_missing_rx_number_warns(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,,30,30,Dr. Adams,$4.00',
            '01/05/2024,Atorvastatin 20mg Tablet,,30,30,Dr. Adams,$12.50',
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert report.summary.logs_created == 2
        assert all('MISSING_RX_NUMBER' in codes for codes in outcome_codes(report))

    def test_unparseable_price_left_empty(self):
        report = import_pharmacy_records(build_csv('01/05/2024,Lisinopril 10mg,RX1,30,30,Dr. Adams,N/A'), 'j.csv')

        assert outcome_codes(report)[0] == ['UNPARSEABLE_PRICE']
        assert MedicationLog.objects.get().price is None

    def test_declared_total_mismatch_reported(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            'Total Prescriptions: 5,,,,,,',
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert [w['code'] for w in report.file_warnings] == ['DECLARED_TOTAL_MISMATCH']

    def test_unusable_phone_does_not_sink_rows(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            '02/05/2024,Atorvastatin 20mg Tablet,RX1002,30,30,Dr. Adams,$12.50',
            patient_lines=[
                'Patient Name:,John Smith,,,,,',
                'Date of Birth:,01/15/1980,,,,,',
                'Phone:,555-123-4567 ext. 204 (home),,,,,',
            ],
        )
        report = import_pharmacy_records(raw, 'john.csv')

        assert report.summary.logs_created == 2
        assert report.summary.errors == 0
        assert [w['code'] for w in report.file_warnings] == ['UNPARSEABLE_PHONE']
        assert FamilyMember.objects.get().phone == ''


# ===================================================================
# Fatal errors: 没有任何写入
# ===================================================================

@pytest.mark.django_db
class TestFatalErrors:

    def assert_nothing_persisted(self):
        assert FamilyMember.objects.count() == 0
        assert Medicine.objects.count() == 0
        assert MedicationLog.objects.count() == 0

    def test_missing_patient_name(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            patient_lines=['Date of Birth:,01/15/1980,,,,,', 'Address:,123 Main St,,,,,'],
        )
        with pytest.raises(PatientNameMissing):
            import_pharmacy_records(raw, 'no_name.csv')
        self.assert_nothing_persisted()

    def test_no_patient_header(self):
        raw = build_csv('01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00', patient_lines=[])
        with pytest.raises(PatientHeaderNotFound):
            import_pharmacy_records(raw, 'anonymous.csv')
        self.assert_nothing_persisted()

    def test_unknown_format(self):
        with pytest.raises(UnrecognizedFormat):
            import_pharmacy_records(b'name,email\nJohn,j@example.com\n', 'contacts.csv')
        self.assert_nothing_persisted()

    def test_legacy_xls(self):
        with pytest.raises(UnrecognizedFormat) as exc_info:
            import_pharmacy_records(b'\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1' + b'\x00' * 512, 'old.xls')
        assert exc_info.value.code == 'LEGACY_SPREADSHEET'
        self.assert_nothing_persisted()

    def test_header_beyond_lookahead(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            patient_lines=[',,,,,,'] * 3 + ['Patient Name:,John Smith,,,,,'],
        )
        with pytest.raises(PatientHeaderNotFound):
            import_pharmacy_records(raw, 'deep.csv', lookahead=3)
        self.assert_nothing_persisted()

    def test_spreadsheet_missing_name(self):
        raw = build_xlsx([
            ['Confidential Prescription Records'],
            ['Date of Birth:', '03/20/1985'],
            ['Fill Date', 'Drug Name', 'Rx #'],
            ['04/01/2024', 'Metformin 500mg', '2001'],
        ])
        with pytest.raises(PatientNameMissing):
            import_pharmacy_records(raw, 'jane.xlsx')
        self.assert_nothing_persisted()

    def test_title_line_not_taken_as_patient(self):
        raw = build_csv(
            '01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00',
            patient_lines=['Walgreens Pharmacy,,,,,,'],
        )
        with pytest.raises(PatientNameMissing):
            import_pharmacy_records(raw, 'walgreens.csv')
        self.assert_nothing_persisted()
