from __future__ import annotations

import threading
from typing import Callable, Optional

import structlog
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from ..application.ports import IAttendanceContract, ITransaction
from ..config import Settings
from ..domain.entities import Course, Student, TxReceipt, normalize_address
from ..domain.errors import (
    AlreadyAttended, AlreadyRegistered, AttendanceError, CourseInactive, CourseNotFound, NotRegistered,
    OutOfTimeWindow, ServiceUnavailable, TransactionFailed, error_from_revert,
)
from . import metrics
from .chain import ChainGateway
from .mock_ledger import MockLedger

logger = structlog.get_logger()


def _fn(name, inputs=(), outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "stateMutability": mutability,
    }


def _event(name, inputs):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": i} for n, t, i in inputs],
    }


CONTRACT_ABI = [
    # роли
    _fn("owner", outputs=["address"], mutability="view"),
    _fn("isAdmin", [("_account", "address")], ["bool"], "view"),
    _fn("hasSystemAccess", [("_account", "address")], ["bool"], "view"),
    _fn("addAdmin", [("_admin", "address")]),
    _fn("removeAdmin", [("_admin", "address")]),
    _fn("getContractVersion", outputs=["string"], mutability="pure"),
    # студенты
    _fn("registerStudent", [("_student", "address"), ("_name", "string"), ("_studentId", "string")]),
    _fn("getStudentInfo", [("_student", "address")], ["string", "string", "bool"], "view"),
    _fn("getStudentCount", outputs=["uint256"], mutability="view"),
    _fn("getStudents", [("_startIndex", "uint256"), ("_count", "uint256")], ["address[]"], "view"),
    # курсы
    _fn("createCourse", [("_name", "string"), ("_startTime", "uint256"), ("_endTime", "uint256")], ["uint256"]),
    _fn("activateCourse", [("_courseId", "uint256")]),
    _fn("deactivateCourse", [("_courseId", "uint256")]),
    _fn("getCourseInfo", [("_courseId", "uint256")], ["string", "uint256", "uint256", "address", "bool"], "view"),
    _fn("getCourseCount", outputs=["uint256"], mutability="view"),
    # посещаемость
    _fn("recordAttendance", [("_courseId", "uint256")]),
    _fn("manualAttendance", [("_student", "address"), ("_courseId", "uint256")]),
    _fn("batchRecordAttendance", [("_students", "address[]"), ("_courseId", "uint256")]),
    _fn("checkAttendance", [("_student", "address"), ("_courseId", "uint256")], ["bool"], "view"),
    _fn("getAttendanceDetails", [("_student", "address"), ("_courseId", "uint256")], ["bool", "uint256"], "view"),
    # события
    _event("StudentRegistered", [("student", "address", True), ("name", "string", False), ("studentId", "string", False)]),
    _event("CourseCreated", [("courseId", "uint256", True), ("name", "string", False),
                             ("startTime", "uint256", False), ("endTime", "uint256", False)]),
    _event("CourseActivated", [("courseId", "uint256", True)]),
    _event("CourseDeactivated", [("courseId", "uint256", True)]),
    _event("AttendanceRecorded", [("student", "address", True), ("courseId", "uint256", True),
                                  ("timestamp", "uint256", False)]),
]

EVENT_NAMES = [item["name"] for item in CONTRACT_ABI if item["type"] == "event"]


def _translate(e: Exception) -> AttendanceError:
    if isinstance(e, AttendanceError):
        return e
    if isinstance(e, ContractLogicError):
        reason = str(e)
        return error_from_revert(reason) or TransactionFailed(f"Transaction reverted: {reason}")
    return ServiceUnavailable(f"Ethereum RPC failed: {e}")


class LiveTransaction(ITransaction):
    def __init__(self, contract: "LiveContract", tx_hash, extra_events: list[dict] | None = None):
        self.contract = contract
        self.hash = Web3.to_hex(tx_hash)
        self.extra_events = extra_events or []

    def wait(self, timeout: float | None = None) -> TxReceipt:
        w3 = self.contract.w3
        try:
            receipt = w3.eth.wait_for_transaction_receipt(self.hash, timeout=timeout or self.contract.receipt_timeout)
        except TimeExhausted:
            raise TransactionFailed(f"Transaction {self.hash} was not mined in time")
        except Exception as e:
            raise _translate(e)

        if receipt["status"] != 1:
            raise TransactionFailed(f"Transaction {self.hash} reverted")

        events = []
        for name in EVENT_NAMES:
            for ev in getattr(self.contract.contract.events, name)().process_receipt(receipt, errors=DISCARD):
                events.append({"event": ev["event"], "args": dict(ev["args"])})
        return TxReceipt(
            transaction_hash=self.hash,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            events=events + self.extra_events,
        )


class PreflightRejected(ITransaction):
    """Пакет, где все студенты отсеяны предпроверкой; транзакция не отправлялась."""

    hash = ""

    def __init__(self, events: list[dict]):
        self.events = events

    def wait(self, timeout: float | None = None) -> TxReceipt:
        return TxReceipt(transaction_hash="", block_number=0, gas_used=0, events=self.events)


class LiveContract(IAttendanceContract):
    backend = "live"

    def __init__(
        self,
        w3: Web3,
        address: str,
        private_key: Optional[str] = None,
        *,
        is_local_node: bool = False,
        is_development: bool = False,
        dev_owner: Optional[str] = None,
        receipt_timeout: float = 120.0,
    ):
        self.w3 = w3
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=CONTRACT_ABI)
        self.account = Account.from_key(private_key) if private_key else None
        self.is_local_node = is_local_node
        self.is_development = is_development
        self.dev_owner = dev_owner
        self.receipt_timeout = receipt_timeout

    @property
    def sender(self) -> str:
        if self.account is not None:
            return self.account.address
        return self.w3.eth.accounts[0]

    def _call(self, name: str, *args):
        try:
            return getattr(self.contract.functions, name)(*args).call()
        except Exception as e:
            raise _translate(e)

    def _send(self, name: str, *args, extra_events: list[dict] | None = None) -> LiveTransaction:
        fn = getattr(self.contract.functions, name)(*args)
        try:
            if self.account is None:
                tx_hash = fn.transact({"from": self.sender})
            else:
                tx = fn.build_transaction({
                    "from": self.account.address,
                    "nonce": self.w3.eth.get_transaction_count(self.account.address),
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            err = _translate(e)
            logger.warning("contract_transaction_rejected", method=name, error=err.message)
            raise err
        logger.info("contract_transaction_sent", method=name, tx_hash=Web3.to_hex(tx_hash))
        return LiveTransaction(self, tx_hash, extra_events)

    @staticmethod
    def _addr(address: str) -> str:
        return Web3.to_checksum_address(address)

    # --- Студенты

    def register_student(self, address, name, student_id):
        existing = self.get_student_info(address)
        if existing.is_registered:
            raise AlreadyRegistered(existing=existing)
        return self._send("registerStudent", self._addr(address), name, student_id)

    def get_student_info(self, address):
        name, student_id, registered = self._call("getStudentInfo", self._addr(address))
        return Student(normalize_address(address), name, student_id, bool(registered))

    def get_student_count(self):
        return int(self._call("getStudentCount"))

    def get_students(self, start, count):
        return [normalize_address(a) for a in self._call("getStudents", start, count)]

    # --- Курсы

    def create_course(self, name, start_time, end_time):
        return self._send("createCourse", name, start_time, end_time)

    def get_course_info(self, course_id):
        if course_id < 1 or course_id > self.get_course_count():
            raise CourseNotFound()
        name, start, end, teacher, active = self._call("getCourseInfo", course_id)
        return Course(course_id, name, int(start), int(end), normalize_address(teacher), bool(active))

    def get_course_count(self):
        return int(self._call("getCourseCount"))

    def deactivate_course(self, course_id):
        return self._send("deactivateCourse", course_id)

    def activate_course(self, course_id):
        return self._send("activateCourse", course_id)

    # --- Посещаемость

    def record_attendance(self, student, course_id):
        # recordAttendance отмечает msg.sender, иначе нужна ручная отметка
        if normalize_address(student) == normalize_address(self.sender):
            return self._send("recordAttendance", course_id)
        return self._send("manualAttendance", self._addr(student), course_id)

    def batch_record_attendance(self, students, course_id):
        course = self.get_course_info(course_id)
        try:
            now = int(self.w3.eth.get_block("latest")["timestamp"])
        except Exception as e:
            raise _translate(e)

        eligible, rejected = [], []
        for raw in students:
            student = normalize_address(raw)
            try:
                if not self.get_student_info(student).is_registered:
                    raise NotRegistered()
                if not course.is_active:
                    raise CourseInactive()
                if not course.is_open_at(now):
                    raise OutOfTimeWindow()
                if self.check_attendance(student, course_id):
                    raise AlreadyAttended()
            except (NotRegistered, CourseInactive, OutOfTimeWindow, AlreadyAttended) as e:
                rejected.append({"event": "AttendanceFailed",
                                 "args": {"student": student, "courseId": course_id, "reason": e.code}})
                continue
            eligible.append(student)

        if not eligible:
            return PreflightRejected(rejected)
        return self._send(
            "batchRecordAttendance", [self._addr(s) for s in eligible], course_id, extra_events=rejected,
        )

    def check_attendance(self, student, course_id):
        return bool(self._call("checkAttendance", self._addr(student), course_id))

    def get_attendance_details(self, student, course_id):
        present, timestamp = self._call("getAttendanceDetails", self._addr(student), course_id)
        return bool(present), int(timestamp)

    # --- Роли

    @property
    def permissive(self) -> bool:
        return self.is_local_node and self.is_development

    def is_admin(self, address):
        if self.permissive:
            return True
        try:
            return bool(self._call("isAdmin", self._addr(address)))
        except AttendanceError as e:
            logger.warning("contract_role_query_failed", query="isAdmin", error=e.message)
            return False

    def has_system_access(self, address):
        if self.permissive:
            return True
        try:
            return bool(self._call("hasSystemAccess", self._addr(address)))
        except AttendanceError as e:
            logger.warning("contract_role_query_failed", query="hasSystemAccess", error=e.message)
            return False

    def owner(self):
        try:
            return normalize_address(self._call("owner"))
        except AttendanceError as e:
            logger.warning("contract_role_query_failed", query="owner", error=e.message)
            if self.is_local_node and self.dev_owner:
                return normalize_address(self.dev_owner)
            return None

    def add_admin(self, address):
        return self._send("addAdmin", self._addr(address))

    def remove_admin(self, address):
        return self._send("removeAdmin", self._addr(address))


ContractFactory = Callable[[Web3, ChainGateway], IAttendanceContract]


class ContractAccessor:
    """Выбирает живой контракт или mock ledger с одинаковым набором методов."""

    def __init__(
        self,
        gateway: ChainGateway,
        mock: MockLedger,
        settings: Settings,
        contract_factory: Optional[ContractFactory] = None,
    ):
        self.gateway = gateway
        self.mock = mock
        self.settings = settings
        self._factory = contract_factory or self._default_factory
        self._lock = threading.Lock()
        self._live: Optional[IAttendanceContract] = None
        self._live_w3: Optional[Web3] = None

    def _default_factory(self, w3: Web3, gateway: ChainGateway) -> IAttendanceContract:
        return LiveContract(
            w3,
            self.settings.CONTRACT_ADDRESS,
            self.settings.PRIVATE_KEY,
            is_local_node=gateway.state.is_local_node,
            is_development=self.settings.is_development,
            dev_owner=self.settings.DEV_WALLET_ADDRESS,
        )

    @property
    def fallback_allowed(self) -> bool:
        return (
            self.settings.is_development
            or self.gateway.state.is_local_node
            or self.settings.ALLOW_MOCK_FALLBACK
        )

    @property
    def mode(self) -> str:
        with self._lock:
            live = self._live is not None
        if live and self.gateway.is_reachable:
            return "live"
        return "mock" if self.fallback_allowed else "unavailable"

    def refresh(self) -> str:
        """Пересоздать живой контракт, если узел переподключился."""
        before = self.mode
        w3 = self.gateway.web3
        with self._lock:
            if w3 is None or not self.settings.CONTRACT_ADDRESS:
                self._live, self._live_w3 = None, None
            elif self._live is None or self._live_w3 is not w3:
                try:
                    self._live = self._factory(w3, self.gateway)
                    self._live_w3 = w3
                except Exception as e:
                    logger.error("contract_init_failed", address=self.settings.CONTRACT_ADDRESS, error=str(e))
                    self._live, self._live_w3 = None, None
        after = self.mode
        metrics.contract_backend_live.set(1 if after == "live" else 0)
        if after != before:
            logger.info("contract_backend_changed", previous=before, current=after)
        return after

    def get(self) -> IAttendanceContract:
        with self._lock:
            live = self._live
        if live is None and self.gateway.is_reachable:
            self.refresh()
            with self._lock:
                live = self._live
        if live is not None and self.gateway.is_reachable:
            return live
        if self.fallback_allowed:
            return self.mock
        logger.error("contract_unavailable", environment=self.settings.ENVIRONMENT)
        raise ServiceUnavailable()
