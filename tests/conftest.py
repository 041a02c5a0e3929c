import pytest
import sys
import os
from fastapi.testclient import TestClient

# Ensure we can import from the parent directory
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from db import get_supabase
from fakes import TABLES, make_table, make_supabase

@pytest.fixture
def tables():
    return {name: make_table() for name in TABLES}

@pytest.fixture
def mock_supabase(tables):
    return make_supabase(tables)

@pytest.fixture
def client(mock_supabase):
    # get_supabase normally builds a real AsyncClient per request
    app.dependency_overrides[get_supabase] = lambda: mock_supabase
    yield TestClient(app)
    app.dependency_overrides = {}
