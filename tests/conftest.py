"""
Shared fixtures for all tests.

factory-boy factories and sample pharmacy exports live here so both unit/ and integration/ can import them.
"""
import io
import pytest
import zipfile
from datetime import date, datetime

import factory
from openpyxl import Workbook

from medrecords.models import FamilyMember, Medicine, MedicationLog, ImportJob


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class FamilyMemberFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = FamilyMember

    name = 'John Smith'
    name_key = factory.LazyAttribute(lambda o: ' '.join(o.name.split()).casefold())
    first_name = 'John'
    last_name = 'Smith'
    dob = date(1980, 1, 15)


class MedicineFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Medicine

    name = 'Lisinopril'
    strength = '10mg'
    form = ''
    name_key = factory.LazyAttribute(lambda o: o.name.casefold())
    strength_key = factory.LazyAttribute(lambda o: o.strength.casefold().replace(' ', ''))
    form_key = factory.LazyAttribute(lambda o: o.form.casefold())


class MedicationLogFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = MedicationLog

    medicine = factory.SubFactory(MedicineFactory)
    family_member = factory.SubFactory(FamilyMemberFactory)
    fill_date = date(2024, 1, 5)
    rx_number = factory.Sequence(lambda n: f'RX{9000 + n}')
    import_key = factory.LazyAttribute(
        lambda o: f'rx:{o.rx_number}|{o.fill_date.isoformat()}|{o.family_member.id}'
    )


class ImportJobFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ImportJob

    filename = 'john_smith.csv'
    payload = b''
    status = 'pending'


# ---------------------------------------------------------------------------
# Sample exports
# ---------------------------------------------------------------------------

LABELED_CSV = (
    "Confidential Prescription Records,,,,,,\n"
    "Patient Name:,John Smith,,,,,\n"
    "Date of Birth:,01/15/1980,,,,,\n"
    "Address:,123 Main St,,,,,\n"
    "Phone:,(555) 123-4567,,,,,\n"
    ",,,,,,\n"
    "Fill Date,Drug Name,Rx Number,Qty,Day Supply,Prescriber,Price\n"
    "01/05/2024,Lisinopril 10mg,RX1001,30,30,Dr. Adams,$4.00\n"
    "02/05/2024,Atorvastatin 20mg Tablet,RX1002,30,30,Dr. Adams,$12.50\n"
    "03/05/2024,Lisinopril 10mg,RX1003,30,30,Dr. Adams,$4.00\n"
    "Total Prescriptions: 3,,,,,,\n"
)

# Walgreens 实际导出：没有标签，每行一个字段
POSITIONAL_CSV = (
    "Confidential Prescription Records,,,,,,,,,\n"
    ",,,,,,,,,\n"
    "Rune Larsen,,,,,,,,,\n"
    "555 n danebo ave spc 34,,,,,,,,,\n"
    "\"eugene, OR 974022230\",,,,,,,,,\n"
    "5416062179,,,,,,,,,\n"
    "01/14/1971,,,,,,,,,\n"
    "Male,,,,,,,,,\n"
    ",,,,,,,,,\n"
    "09/08/2025 to 09/13/2025,,,,,,,,,\"Showing  Prescriptions, Sorted By fill date\"\n"
    "Fill Date,Prescription,Rx #,Qty,Prescriber,Pharmacist,NDC#,Insurance,Claim Reference #,Price\n"
    "09/08/2025,Cyclobenzaprine 10mg Tablets,185848411643,90,\"Wilson,Erica\",SMM,29300041510,APM,252514899525277999,$0.00\n"
    "09/13/2025,Meloxicam 15mg Tablets,185848411650,30,\"Wilson,Erica\",SMM,29300012410,APM,252514899525278000,$1.25\n"
    ",,,,,,,,Total ,$1.25\n"
    ",,,,,,,,Generics Saved You ,$0.00\n"
)


def build_csv(*body_lines, patient_lines=None):
    """拼一个带标签表头的 CSV 导出；body_lines 是表头之后的数据行。"""
    if patient_lines is None:
        patient_lines = [
            "Patient Name:,John Smith,,,,,",
            "Date of Birth:,01/15/1980,,,,,",
        ]
    lines = [
        "Confidential Prescription Records,,,,,,",
        *patient_lines,
        ",,,,,,",
        "Fill Date,Drug Name,Rx Number,Qty,Day Supply,Prescriber,Price",
        *body_lines,
    ]
    return ("\n".join(lines) + "\n").encode('utf-8')


def build_xlsx(rows):
    """rows → xlsx 字节（第一个 sheet）。"""
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def truncate_sheet(raw, member='xl/worksheets/sheet1.xml'):
    """复制 xlsx，把指定 sheet 的 XML 截掉后半段。"""
    source = zipfile.ZipFile(io.BytesIO(raw))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == member:
                data = data[:len(data) // 2]
            target.writestr(item, data)
    return buffer.getvalue()


SPREADSHEET_ROWS = [
    ['Confidential Prescription Records'],
    ['Patient Name:', 'Jane Doe'],
    ['Date of Birth:', '03/20/1985'],
    ['Gender:', 'Female'],
    [],
    ['Fill Date', 'Drug Name', 'Rx #', 'Qty', 'Prescriber', 'NDC#', 'Price'],
    [datetime(2024, 4, 1), 'Metformin 500mg Tablet', 2001, 60, 'Dr. Lee', 65162017510, 3.5],
    [datetime(2024, 5, 1), 'Metformin 500mg Tablet', 2002, 60, 'Dr. Lee', 65162017510, 3.5],
]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def labeled_csv():
    return LABELED_CSV.encode('utf-8')


@pytest.fixture
def positional_csv():
    return POSITIONAL_CSV.encode('utf-8')


@pytest.fixture
def walgreens_xlsx():
    return build_xlsx(SPREADSHEET_ROWS)
