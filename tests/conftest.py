"""
Pytest configuration and shared fixtures for the workflow test suite.
"""
import os
import shutil
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

from models import (
    InventoryLoss, LossType, PaymentMilestone, PaymentTrigger, POLineItem, PurchaseOrder,
)
from workflow.errors import SendError

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


class RecordingNotifier:
    """Supplier notifier that records each order it is asked to send."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    def notify(self, order) -> None:
        self.sent.append(order.id)


class FailingNotifier:
    """Supplier notifier whose transport is always down."""

    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, order) -> None:
        self.attempts += 1
        raise SendError("connection refused")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="workflow_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    monkeypatch.delenv("SUPPLIER_NOTIFY_URL", raising=False)

    config = Config()
    config.output_dir = temp_dir / "output"
    config.db_path = temp_dir / "output" / "workflow.db"
    config.attachments_dir = temp_dir / "output" / "attachments"
    config.ensure_output_dir()
    return config


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from workflow.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def service(test_db, test_config, recording_notifier) -> "WorkflowService":
    """A WorkflowService wired to the temp database and a recording notifier."""
    from workflow.attachments import LocalAttachmentStore
    from workflow.service import WorkflowService
    return WorkflowService(
        test_db,
        notifier=recording_notifier,
        attachments=LocalAttachmentStore(test_config.attachments_dir),
        config=test_config,
    )


@pytest.fixture
def sample_order() -> PurchaseOrder:
    """A draft PO with two line items."""
    return PurchaseOrder(
        po_number="PO-2024-001",
        supplier_name="Acme Supplies Pty Ltd",
        supplier_email="orders@acme.example",
        order_date=date(2024, 1, 15),
        expected_date=date(2024, 3, 1),
        total=Decimal("1000.00"),
        line_items=[
            POLineItem(sku="ITEM-001", description="Office Chairs", quantity=10, unit_cost=Decimal("50.00")),
            POLineItem(sku="ITEM-002", description="Standing Desks", quantity=5, unit_cost=Decimal("100.00")),
        ],
    )


@pytest.fixture
def deposit_terms() -> list[PaymentMilestone]:
    """30% on PO confirmation, 70% fourteen days after goods received."""
    return [
        PaymentMilestone(name="Deposit", percentage=30, trigger=PaymentTrigger.PO_CONFIRMED),
        PaymentMilestone(name="Balance", percentage=70, trigger=PaymentTrigger.GOODS_RECEIVED, offset_days=14),
    ]


@pytest.fixture
def sample_loss() -> InventoryLoss:
    """10 units at $10.00 damaged on the way in."""
    return InventoryLoss(
        loss_type=LossType.DAMAGED_INBOUND,
        sku="ITEM-001",
        quantity=10,
        unit_cost=Decimal("10.00"),
        loss_date=date(2024, 2, 1),
        marketplace="amazon",
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
