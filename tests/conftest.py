# Storefront Catalog Live-Server Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test server provisioning (ephemeral SQLite file + upload folder per run)
# - HTTP client wrapper (JSON and multipart)
# - Catalog data factory
# - Failure message formatting

import os
import json
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any, List
from dataclasses import dataclass

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))

    # Concurrency (for stress tests)
    stress_users: int = int(os.environ.get("TEST_STRESS_USERS", "10"))
    stress_duration: int = int(os.environ.get("TEST_STRESS_DURATION", "60"))

    # Random seed for determinism
    seed: int = int(os.environ.get("TEST_SEED", str(int(time.time()))))

    @property
    def port(self) -> str:
        return self.backend_base_url.rsplit(":", 1)[-1].strip("/")


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}

        message = self._format_message()
        super().__init__(message)

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert HTTP response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in response.text:
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {response.text[:500]}",
            likely_cause="Response format changed or wrong endpoint hit",
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from response status/body."""
    if response.status_code == 404:
        return "Resource not found - wrong ID or soft-deleted product"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - duplicate slug/SKU/combination or value still in use"
    elif response.status_code == 413:
        return "Upload too large - check MAX_CONTENT_LENGTH"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    elif response.status_code == 503:
        return "Unhealthy - database or upload folder unavailable"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """
    HTTP client wrapper with JSON and multipart convenience methods.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(f"{self.base_url}{path}", params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(f"{self.base_url}{path}", json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(f"{self.base_url}{path}", json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(f"{self.base_url}{path}", **kwargs)

    def send_form(
        self,
        method: str,
        path: str,
        payload: Dict,
        files: List[tuple],
    ) -> httpx.Response:
        """
        Multipart write: payload travels as the JSON "payload" field, files as
        (field_name, (filename, bytes, content_type)) tuples. At least one file
        is needed for httpx to encode the body as multipart.
        """
        return self.client.request(
            method,
            f"{self.base_url}{path}",
            data={"payload": json.dumps(payload)},
            files=files,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

class ServerManager:
    """
    Manages Flask backend server lifecycle for tests.
    """

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.temp_dir: Optional[Path] = None

    @property
    def db_url(self) -> str:
        return f"sqlite:///{self.temp_dir / 'test_storefront.sqlite3'}"

    @property
    def upload_folder(self) -> str:
        return str(self.temp_dir / "uploads")

    def start(self) -> bool:
        """Create the schema, then start the Flask server against it."""
        self.temp_dir = Path(tempfile.mkdtemp(prefix="storefront_test_"))
        self.initialize_db()

        env = os.environ.copy()
        env["DATABASE_URL"] = self.db_url
        env["UPLOAD_FOLDER"] = self.upload_folder
        env["FLASK_APP"] = "storefront"

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "run", "--port", self.config.port],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        """Wait for server to be responsive."""
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/api/health", timeout=2.0)
                if response.status_code in (200, 503):
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        """Stop the Flask server and cleanup."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.temp_dir and self.temp_dir.exists():
            shutil.rmtree(self.temp_dir, ignore_errors=True)

    def initialize_db(self):
        """Create every catalog table in the test database."""
        from storefront import create_app
        from storefront.extensions import db

        app = create_app({
            "SQLALCHEMY_DATABASE_URI": self.db_url,
            "UPLOAD_FOLDER": self.upload_folder,
        })

        with app.app_context():
            db.create_all()


# =============================================================================
# TEST DATA FACTORIES
# =============================================================================

class TestDataFactory:
    """
    Factory for creating catalog data via API calls.

    Names carry a run-unique suffix so tests sharing the session database never
    collide on slugs or SKUs.
    """

    def __init__(self, client: APIClient, seed: int):
        self.client = client
        self.seed = seed
        self._counter = 0

    def unique(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix} {self.seed}-{self._counter}"

    def _expect(self, response: httpx.Response, status: int, scenario: str, location: str) -> Dict:
        if response.status_code == status:
            return response.json()
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=location,
            response=response
        )

    def create_category(self, name: Optional[str] = None, parent_id: Optional[int] = None) -> Dict:
        """Create a category via API."""
        payload = {"name": name or self.unique("Category")}
        if parent_id is not None:
            payload["parent_id"] = parent_id
        return self._expect(
            self.client.post("/api/categories", json=payload), 201,
            "Create test category", "backend/storefront/routes/categories.py:create_category_route",
        )

    def create_attribute(self, values: List[str], name: Optional[str] = None) -> Dict:
        """Create an attribute with ordered values via API."""
        return self._expect(
            self.client.post("/api/attributes", json={"name": name or self.unique("Attribute"), "values": values}),
            201,
            "Create test attribute", "backend/storefront/routes/attributes.py:create_attribute_route",
        )

    def create_simple_product(self, category_id: int, price: str = "10.00", **extra) -> Dict:
        """Create a simple product via API."""
        name = self.unique("Product")
        payload = {
            "name": name,
            "category_id": category_id,
            "price": price,
            "sku": name.upper().replace(" ", "-"),
            "stock_quantity": 5,
        }
        payload.update(extra)
        return self._expect(
            self.client.post("/api/products", json=payload), 201,
            "Create simple product", "backend/storefront/routes/products.py:create_product_route",
        )

    def generate(self, selections: List[Dict], base: Optional[Dict] = None, product_id: Optional[int] = None) -> Dict:
        """Draft variations via API."""
        path = "/api/products/generate-variations"
        if product_id is not None:
            path = f"/api/products/{product_id}/generate-variations"
        return self._expect(
            self.client.post(path, json={"attributes": selections, "base": base or {}}), 200,
            "Generate variations", "backend/storefront/routes/products.py:generate_variations_route",
        )

    def create_variable_product(self, category_id: int, variations: List[Dict]) -> Dict:
        """Create a variable product with the given variation payloads."""
        return self._expect(
            self.client.post("/api/products", json={
                "name": self.unique("Variable"),
                "category_id": category_id,
                "is_variable": True,
                "variations": variations,
            }),
            201,
            "Create variable product", "backend/storefront/routes/products.py:create_product_route",
        )


def select_all(attribute: Dict) -> Dict:
    """Selection entry for generate-variations using every value of an attribute."""
    return {"attribute_id": attribute["id"], "value_ids": [v["id"] for v in attribute["values"]]}


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """
    Manage test server lifecycle.
    Server is started once per test session.
    """
    manager = ServerManager(test_config)

    # For CI/external server mode, don't manage server
    if os.environ.get("TEST_EXTERNAL_SERVER"):
        yield manager
    else:
        if not manager.start():
            manager.stop()
            pytest.fail("Failed to start test server")
        yield manager
        manager.stop()


@pytest.fixture(scope="session")
def api_client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    """Provide API client shared by the session."""
    client = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    return api_client


@pytest.fixture(scope="session")
def factory(api_client: APIClient, test_config: TestConfig) -> TestDataFactory:
    """Provide catalog data factory."""
    return TestDataFactory(api_client, test_config.seed)


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "full: Full regression tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")
    config.addinivalue_line("markers", "categories: Category tree tests")
    config.addinivalue_line("markers", "attributes: Attribute catalog tests")
    config.addinivalue_line("markers", "products: Product management tests")
    config.addinivalue_line("markers", "variations: Variation generation and reconciliation tests")
    config.addinivalue_line("markers", "media: Image upload and serving tests")
