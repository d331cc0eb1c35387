"""Pytest configuration and fixtures."""

import pytest
import os
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment before omnidesk.infra.config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ["META_APP_SECRET"] = "test-app-secret"
os.environ["META_WEBHOOK_VERIFY_TOKEN"] = "test-verify-token"
os.environ["WEBHOOK_PROCESSING_MODE"] = "background"
os.environ["MESSAGE_DEDUP_ENABLED"] = "false"

from fakes import FakeGraphClient, InMemoryHelpdeskStore


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryHelpdeskStore()


@pytest.fixture
def organization_id(store):
    return store.add_organization("Acme Support")


@pytest.fixture
def whatsapp_inbox(store, organization_id):
    return store.add_inbox(
        organization_id,
        "whatsapp",
        wa_phone_number="+15550001111",
        wa_phone_number_id="109876543210",
        wa_access_token="wa-token",
    )


@pytest.fixture
def facebook_inbox(store, organization_id):
    return store.add_inbox(
        organization_id,
        "facebook",
        fb_page_id="PAGE_1",
        fb_access_token="page-token",
    )


@pytest.fixture
def instagram_inbox(store, organization_id):
    return store.add_inbox(
        organization_id,
        "instagram",
        fb_page_id="PAGE_2",
        ig_account_id="IG_1",
        fb_access_token="page-token-2",
    )


@pytest.fixture
def widget_inbox(store, organization_id):
    return store.add_inbox(organization_id, "widget", name="Website chat", widget_token="wt_123")


@pytest.fixture
def graph_client():
    return FakeGraphClient()
