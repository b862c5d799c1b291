# Flight Operations Live Test Suite - shared fixtures
#
# - Starts `flask run` against a throwaway SQLite file (once per session)
# - Seeds two flight schools through the app's own services
# - httpx client with bearer-token login
# - Failure reports that say where to look

import os
import sys
import time
import shutil
import tempfile
import subprocess
from pathlib import Path
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from typing import Dict, Generator, Optional, Tuple

import pytest
import httpx

REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

PASSWORD = "TestPass123!"


@dataclass
class LiveConfig:
    """Live-suite settings, overridable from the environment (see tests/run.py)."""
    __test__ = False

    base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))
    external_server: bool = bool(os.environ.get("TEST_EXTERNAL_SERVER"))

    @property
    def port(self) -> str:
        return self.base_url.rsplit(":", 1)[-1].strip("/")


@dataclass
class SeedData:
    """Ids of the rows written by ServerManager.initialize_db."""
    alpha_org_id: int = 0
    beta_org_id: int = 0
    users: Dict[str, int] = field(default_factory=dict)
    aircraft: Dict[str, int] = field(default_factory=dict)
    chargeables: Dict[str, int] = field(default_factory=dict)


# =============================================================================
# FAILURE REPORTING
# =============================================================================

LIKELY_CAUSES = {
    400: "Validation failed - missing field, wrong type or bad enum value",
    401: "Token missing, expired or revoked",
    403: "Role lacks the capability, or actor is not a member of the organization",
    404: "Wrong id, or the row belongs to another organization",
    409: "Overlapping active booking, or the entity's status forbids the change",
    500: "Unhandled exception - check the server log",
    503: "Datastore busy or unavailable after retries",
}


class TestFailure(AssertionError):
    """AssertionError carrying a scenario / expected / actual / cause / location report."""
    __test__ = False

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
    ):
        rows = [
            ("SCENARIO", scenario),
            ("EXPECTED", expected),
            ("ACTUAL", actual),
            ("LIKELY CAUSE", likely_cause),
            ("CODE LOCATION", code_location),
        ]
        if response is not None:
            rows.append(("RESPONSE", f"{response.status_code} {response.text[:1000]}"))
        width = max(len(label) for label, _ in rows)
        body = "\n".join(f"{label.ljust(width)} : {value}" for label, value in rows)
        super().__init__(f"\n{'=' * 80}\n{body}\n{'=' * 80}")


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_kind: Optional[str] = None,
):
    """Check status (and the error envelope's `kind` when given)."""
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=LIKELY_CAUSES.get(response.status_code, "Unexpected status code"),
            code_location=code_location,
            response=response,
        )
    if expected_kind is not None and response.json().get("kind") != expected_kind:
        raise TestFailure(
            scenario=scenario,
            expected=f"error kind {expected_kind}",
            actual=f"error kind {response.json().get('kind')}",
            likely_cause="Service raised a different OperationError subclass",
            code_location=code_location,
            response=response,
        )


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """httpx client bound to the backend that remembers the login token."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self.reset()

    def reset(self):
        self.token: Optional[str] = None
        self.current_user: Optional[Dict] = None
        self.memberships: list = []

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return self.http.request(method, path, headers=headers, **kwargs)

    def get(self, path: str, params: Optional[Dict] = None) -> httpx.Response:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Optional[Dict] = None) -> httpx.Response:
        return self.request("POST", path, json=json)

    def patch(self, path: str, json: Optional[Dict] = None) -> httpx.Response:
        return self.request("PATCH", path, json=json)

    def login(self, email: str, password: str = PASSWORD) -> bool:
        response = self.post("/api/auth/login", json={"email": email, "password": password})
        if response.status_code != 200:
            return False
        data = response.json()
        self.token = data["token"]
        self.current_user = data["user"]
        self.memberships = data.get("memberships", [])
        return True

    def logout(self) -> bool:
        if self.token and self.post("/api/auth/logout").status_code != 200:
            return False
        self.reset()
        return True

    def close(self):
        self.http.close()


# =============================================================================
# SERVER
# =============================================================================

class ServerManager:
    """Owns the backend process and its SQLite file for one pytest session."""

    def __init__(self, config: LiveConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.workdir = Path(tempfile.mkdtemp(prefix="flightops_live_"))

    @property
    def db_url(self) -> str:
        return f"sqlite:///{self.workdir / 'flightops.sqlite3'}"

    def start(self) -> bool:
        env = {**os.environ, "DATABASE_URL": self.db_url}
        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "--app", "wsgi", "run", "--port", self.config.port],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        deadline = time.time() + self.config.startup_timeout
        while time.time() < deadline:
            try:
                # 503 is fine here: the schema is created after the process is up
                if httpx.get(f"{self.config.base_url}/api/health", timeout=2.0).status_code in (200, 503):
                    return True
            except httpx.TransportError:
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None
        shutil.rmtree(self.workdir, ignore_errors=True)

    def initialize_db(self) -> SeedData:
        """Create the schema and seed Alpha Aero Club and Beta Flight Training."""
        from flightops import create_app
        from flightops.config import Config
        from flightops.extensions import db
        from flightops.models import Aircraft, Chargeable, Organization
        from flightops.services.auth_service import create_user, add_membership

        db_url = self.db_url

        class SeedConfig(Config):
            SQLALCHEMY_DATABASE_URI = db_url

        app = create_app(SeedConfig)
        seed = SeedData()

        with app.app_context():
            db.create_all()

            alpha = Organization(name="Alpha Aero Club", code="ALPHA", is_active=True, default_tax_rate_bps=1500)
            beta = Organization(name="Beta Flight Training", code="BETA", is_active=True)
            db.session.add_all([alpha, beta])
            db.session.commit()
            seed.alpha_org_id, seed.beta_org_id = alpha.id, beta.id

            people = {
                "owner": ("owner@alpha.test", "Alice", "Owner", alpha, "owner"),
                "instructor": ("instructor@alpha.test", "Ian", "Instructor", alpha, "instructor"),
                "member": ("member@alpha.test", "Mia", "Member", alpha, "member"),
                "member2": ("member2@alpha.test", "Max", "Member", alpha, "member"),
                "admin_beta": ("admin@beta.test", "Bea", "Admin", beta, "admin"),
            }
            for key, (email, first, last, org, role) in people.items():
                user = create_user(email, PASSWORD, first, last, rounds=4)
                add_membership(user.id, org.id, role)
                seed.users[key] = user.id

            fleet = {
                "alpha_1": Aircraft(organization_id=alpha.id, registration="ZK-AAA", type="C172"),
                "alpha_2": Aircraft(organization_id=alpha.id, registration="ZK-AAB", type="PA28"),
                "beta_1": Aircraft(organization_id=beta.id, registration="ZK-BBB", type="C152"),
            }
            catalog = {
                "rental": Chargeable(organization_id=alpha.id, name="C172 rental", type="aircraft_rental", rate_cents=20000),
                "instruction": Chargeable(organization_id=alpha.id, name="Dual instruction", type="instructor_fee", rate_cents=9000),
            }
            db.session.add_all([*fleet.values(), *catalog.values()])
            db.session.commit()
            seed.aircraft = {key: row.id for key, row in fleet.items()}
            seed.chargeables = {key: row.id for key, row in catalog.items()}

        return seed


# =============================================================================
# DATA FACTORY
# =============================================================================

class BookingFactory:
    """
    Creates bookings and invoices over HTTP as the Alpha owner.

    Each call to next_day() hands out a fresh calendar day so tests sharing the
    live database never collide on the schedule.
    """

    BASE_DAY = datetime(2031, 1, 1)

    def __init__(self, client: APIClient, seed: SeedData):
        self.client = client
        self.seed = seed
        self._days = 0

    def next_day(self) -> datetime:
        self._days += 1
        return self.BASE_DAY + timedelta(days=self._days)

    @staticmethod
    def window(day: datetime, start_hour: int, end_hour: int) -> Tuple[str, str]:
        return day.replace(hour=start_hour).isoformat() + "Z", day.replace(hour=end_hour).isoformat() + "Z"

    def create_booking(self, day: datetime, start_hour: int = 9, end_hour: int = 11, **fields) -> Dict:
        start, end = self.window(day, start_hour, end_hour)
        payload = {
            "organization_id": self.seed.alpha_org_id,
            "aircraft_id": self.seed.aircraft["alpha_1"],
            "user_id": self.seed.users["member"],
            "start_time": start,
            "end_time": end,
            "status": "confirmed",
            **fields,
        }
        response = self.client.post("/api/bookings", json=payload)
        assert_response(response, 201, "Create test booking", "backend/flightops/services/booking_service.py:create_booking")
        return response.json()["booking"]

    def create_invoice(self, user_key: str = "member", quantity: str = "1.5") -> Dict:
        response = self.client.post("/api/invoices", json={
            "organization_id": self.seed.alpha_org_id,
            "user_id": self.seed.users[user_key],
            "due_date": "2031-02-01",
            "items": [
                {"chargeable_id": self.seed.chargeables["rental"], "quantity": quantity},
                {"chargeable_id": self.seed.chargeables["instruction"], "quantity": 1},
            ],
        })
        assert_response(response, 201, "Create test invoice", "backend/flightops/services/invoice_service.py:create_invoice")
        return response.json()["invoice"]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def live_config() -> LiveConfig:
    return LiveConfig()


@pytest.fixture(scope="session")
def server_manager(live_config: LiveConfig) -> Generator[ServerManager, None, None]:
    manager = ServerManager(live_config)
    if live_config.external_server:
        yield manager
        return
    if not manager.start():
        manager.stop()
        pytest.fail(f"Backend did not answer /api/health on {live_config.base_url}")
    yield manager
    manager.stop()


@pytest.fixture(scope="session")
def seed(live_config: LiveConfig, server_manager: ServerManager) -> SeedData:
    if live_config.external_server:
        pytest.skip("Seed ids are only known when this session owns the server")
    return server_manager.initialize_db()


@pytest.fixture(scope="session")
def api_client(live_config: LiveConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    client = APIClient(live_config.base_url, timeout=live_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    """Shared client with auth state cleared."""
    api_client.reset()
    return api_client


def _login_as(client: APIClient, email: str) -> APIClient:
    if not client.login(email):
        pytest.fail(f"Login failed for {email}")
    return client


@pytest.fixture
def owner_client(client: APIClient, seed: SeedData) -> APIClient:
    return _login_as(client, "owner@alpha.test")


@pytest.fixture
def member_client(client: APIClient, seed: SeedData) -> APIClient:
    return _login_as(client, "member@alpha.test")


@pytest.fixture
def beta_admin_client(live_config: LiveConfig, seed: SeedData) -> Generator[APIClient, None, None]:
    """Separate client logged into the other organization."""
    other = APIClient(live_config.base_url, timeout=live_config.request_timeout)
    _login_as(other, "admin@beta.test")
    yield other
    other.close()


@pytest.fixture(scope="session")
def _day_counter() -> Dict[str, int]:
    return {"days": 0}


@pytest.fixture
def factory(owner_client: APIClient, seed: SeedData, _day_counter: Dict[str, int]) -> BookingFactory:
    """Booking/invoice factory whose days keep advancing across the whole session."""
    made = BookingFactory(owner_client, seed)
    made._days = _day_counter["days"]
    yield made
    _day_counter["days"] = made._days


def pytest_configure(config):
    for name, text in [
        ("smoke", "Quick checks of the critical paths"),
        ("auth", "Login, logout and token handling"),
        ("rbac", "Role-based access control"),
        ("bookings", "Booking lifecycle and double-booking guard"),
        ("invoices", "Invoice composition"),
        ("payments", "Payment recording and account credit"),
        ("tenant", "Cross-organization isolation"),
    ]:
        config.addinivalue_line("markers", f"{name}: {text}")
