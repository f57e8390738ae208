"""
Control Engine
Simulated PLC: register banks, ladder rungs and alarms evaluated on a
fixed scan period. Each scan cycle:

    1. Increment the scan counter and stamp the scan time
    2. Evaluate every rung in list order
    3. Evaluate every alarm (edge-triggered)
    4. Step the simulated plant (input registers)
    5. Mirror configured addresses onto the tag bus (optional)

One bad rung or alarm never blocks the rest of the scan.
"""
import asyncio
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from scada.core.error_handling import ScadaError
from scada.services.control.addressing import BankType, parse_address
from scada.services.control.alarms import AlarmDefinition, AlarmTransition, update_alarm
from scada.services.control.ladder import Rung, evaluate_rung
from scada.services.control.process_model import ProcessModel
from scada.services.control.program_loader import load_program
from scada.services.control.register_bank import RegisterBanks

logger = logging.getLogger(__name__)

AlarmCallback = Callable[[AlarmTransition], None]


class ControllerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class ControlEngine:
    """
    One simulated controller.

    The engine exclusively owns its register banks, rungs and alarms.
    ``start()`` runs the scan loop as an asyncio task; each scan body runs
    in a worker thread and scans never overlap: a scan that is due while
    the previous one is still executing is skipped.
    """

    def __init__(
        self,
        controller_id: str,
        name: Optional[str] = None,
        scan_rate_ms: int = 100,
        holding_registers: int = 1000,
        input_registers: int = 1000,
        coils: int = 1000,
        discrete_inputs: int = 1000,
        tag_bus=None,
        tag_prefix: Optional[str] = None,
        mirror_addresses: Optional[Sequence[str]] = None,
        process_model: Optional[ProcessModel] = None,
        alarm_callback: Optional[AlarmCallback] = None,
        seed: Optional[int] = None,
        alarm_log_size: int = 500
    ):
        """
        Initialize controller.

        Args:
            controller_id: Unique controller identifier
            name: Display name
            scan_rate_ms: Scan period in milliseconds
            holding_registers, input_registers, coils, discrete_inputs: Bank sizes
            tag_bus: Optional TagBus to mirror values onto
            tag_prefix: Tag path prefix for mirrored values (default ``PLC/<id>``)
            mirror_addresses: Register addresses published after every scan
            process_model: Simulated plant (default ProcessModel(seed))
            alarm_callback: Called once per alarm transition
            seed: Seed of the default process model noise
            alarm_log_size: Transitions kept in the alarm log
        """
        if scan_rate_ms <= 0:
            raise ValueError("scan_rate_ms must be > 0")

        self.controller_id = controller_id
        self.name = name or f"PLC_{controller_id}"
        self.scan_rate_ms = scan_rate_ms

        self.banks = RegisterBanks(
            holding_registers=holding_registers,
            input_registers=input_registers,
            coils=coils,
            discrete_inputs=discrete_inputs
        )
        self.process_model = process_model or ProcessModel(seed)

        self.tag_bus = tag_bus
        self.tag_prefix = tag_prefix or f"PLC/{controller_id}"
        self.mirror_addresses = [str(parse_address(a)) for a in (mirror_addresses or [])]

        self._rungs: List[Rung] = []
        self._alarms: List[AlarmDefinition] = []
        self._alarm_log: Deque[AlarmTransition] = deque(maxlen=alarm_log_size)
        self._alarm_callbacks: List[AlarmCallback] = []
        if alarm_callback:
            self._alarm_callbacks.append(alarm_callback)

        self._state = ControllerState.STOPPED
        self._scan_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None
        self._scan_count = 0
        self._skipped_scans = 0
        self._skipped_lock = threading.Lock()
        self._last_scan: Optional[float] = None
        self._scan_time_ms = 0.0
        self._max_scan_time_ms = 0.0

        self.stats = {
            'reads': 0,
            'writes': 0,
            'scans': 0,
            'errors': 0
        }

    @classmethod
    def from_config(cls, config, tag_bus=None, alarm_callback: Optional[AlarmCallback] = None) -> "ControlEngine":
        """Build a controller and load its program from a ControllerConfig"""
        engine = cls(
            controller_id=config.id,
            name=config.name,
            scan_rate_ms=config.scan_rate_ms,
            holding_registers=config.holding_registers,
            input_registers=config.input_registers,
            coils=config.coils,
            discrete_inputs=config.discrete_inputs,
            tag_bus=tag_bus,
            tag_prefix=config.tag_prefix,
            mirror_addresses=config.mirror_addresses,
            alarm_callback=alarm_callback,
            seed=config.seed
        )
        load_program(engine, config.rungs, config.alarms)
        return engine

    # ── Properties ───────────────────────────────────────────

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ControllerState.RUNNING

    @property
    def scan_count(self) -> int:
        return self._scan_count

    @property
    def skipped_scans(self) -> int:
        return self._skipped_scans

    @property
    def last_scan(self) -> Optional[float]:
        return self._last_scan

    @property
    def rungs(self) -> List[Rung]:
        return list(self._rungs)

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        """Start the scan loop (no-op while running)"""
        if self.is_running:
            return
        self._state = ControllerState.RUNNING
        self._task = asyncio.create_task(self._scan_loop(), name=f"scan-{self.controller_id}")
        logger.info(f"PLC {self.controller_id} started (scan rate: {self.scan_rate_ms} ms)")

    async def stop(self) -> None:
        """Stop the scan loop (no-op while stopped); an in-flight scan completes"""
        if not self.is_running:
            return
        self._state = ControllerState.STOPPED

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # Wait for a scan still running in its worker thread
        await asyncio.to_thread(self._wait_idle)
        logger.info(f"PLC {self.controller_id} stopped. Total scans: {self._scan_count}")

    def _wait_idle(self) -> None:
        with self._scan_lock:
            pass

    async def _scan_loop(self) -> None:
        loop = asyncio.get_running_loop()
        period = self.scan_rate_ms / 1000.0
        next_tick = loop.time() + period

        while self.is_running:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if not self.is_running:
                break

            try:
                await asyncio.to_thread(self.scan)
            except Exception:
                logger.exception(f"PLC {self.controller_id} scan cycle exception")

            next_tick += period
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // period) + 1
                self._count_skipped(missed)
                next_tick += missed * period
                logger.warning(
                    f"PLC {self.controller_id} scan overrun: {self._scan_time_ms:.1f} ms "
                    f"(target: {self.scan_rate_ms} ms), skipped {missed} scan(s)"
                )

    def _count_skipped(self, count: int) -> None:
        # Incremented by the loop task and by threads calling scan()
        with self._skipped_lock:
            self._skipped_scans += count

    # ── Scan cycle ───────────────────────────────────────────

    def scan(self) -> bool:
        """
        Execute one scan cycle.

        Returns:
            False if another scan was still executing and this one was skipped
        """
        if not self._scan_lock.acquire(blocking=False):
            self._count_skipped(1)
            logger.debug(f"PLC {self.controller_id} scan skipped: previous scan still running")
            return False

        try:
            started = time.monotonic()
            self._scan_count += 1
            self._last_scan = time.time()
            self.stats['scans'] += 1

            self._execute_rungs()
            transitions = self._check_alarms()
            self._simulate_process()
            self._mirror_to_tags(transitions)

            self._scan_time_ms = (time.monotonic() - started) * 1000.0
            self._max_scan_time_ms = max(self._max_scan_time_ms, self._scan_time_ms)
        finally:
            self._scan_lock.release()
        return True

    def _execute_rungs(self) -> None:
        for index, rung in enumerate(list(self._rungs)):
            try:
                evaluate_rung(rung, self._read_for_logic, self.write_address)
            except ScadaError as e:
                self.stats['errors'] += 1
                logger.error(
                    f"PLC {self.controller_id} rung {index} error: {e.message}",
                    extra={'error_code': e.error_code.name, 'details': e.details}
                )
            except Exception:
                self.stats['errors'] += 1
                logger.exception(f"PLC {self.controller_id} rung {index} error")

    def _check_alarms(self) -> List[AlarmTransition]:
        transitions = []
        for alarm in list(self._alarms):
            try:
                value = self._read_for_logic(alarm.address)
                transition = update_alarm(alarm, value, time.time(), self.controller_id)
            except ScadaError as e:
                self.stats['errors'] += 1
                logger.error(
                    f"PLC {self.controller_id} alarm '{alarm.name}' error: {e.message}",
                    extra={'error_code': e.error_code.name, 'details': e.details}
                )
                continue
            except Exception:
                self.stats['errors'] += 1
                logger.exception(f"PLC {self.controller_id} alarm '{alarm.name}' error")
                continue

            if transition:
                self._alarm_log.append(transition)
                transitions.append(transition)
                self._on_alarm(transition)
        return transitions

    def _on_alarm(self, transition: AlarmTransition) -> None:
        if transition.active:
            logger.warning(
                f"[ALARM] PLC {self.controller_id}: {transition.name} - {transition.message} "
                f"(value={transition.value})"
            )
        else:
            logger.info(f"[CLEAR] PLC {self.controller_id}: {transition.name}")

        for callback in list(self._alarm_callbacks):
            try:
                callback(transition)
            except Exception:
                logger.exception(
                    f"PLC {self.controller_id} alarm callback failed for '{transition.name}'"
                )

    def _simulate_process(self) -> None:
        try:
            self.process_model.step(self.banks, self._scan_count)
        except Exception:
            self.stats['errors'] += 1
            logger.exception(f"PLC {self.controller_id} process model error")

    def _mirror_to_tags(self, transitions: List[AlarmTransition]) -> None:
        if self.tag_bus is None:
            return

        updates: Dict[str, Any] = {}
        for address in self.mirror_addresses:
            value = self.read_address(address)
            if value is not None:
                updates[f"{self.tag_prefix}/{address}"] = value
        for transition in transitions:
            updates[f"{self.tag_prefix}/Alarms/{transition.name}"] = transition.active
        updates[f"{self.tag_prefix}/Status/ScanCount"] = self._scan_count

        try:
            self.tag_bus.batch(updates)
        except Exception:
            self.stats['errors'] += 1
            logger.exception(f"PLC {self.controller_id} failed to publish tags")

    # ── Addressed access ─────────────────────────────────────

    def _read_for_logic(self, address) -> int:
        self.stats['reads'] += 1
        return self.banks.read_address(parse_address(address))

    def read_address(self, address) -> Optional[int]:
        """
        Read one address.

        Returns:
            The value, or None when the index is outside its bank
        """
        parsed = parse_address(address)
        self.stats['reads'] += 1
        values = self.banks.read(parsed.bank, parsed.index, 1)
        if values is None:
            logger.warning(f"PLC {self.controller_id} read out of range: {address}")
            return None
        return values[0]

    def write_address(self, address, value) -> bool:
        """
        Write one holding register or coil.

        Returns:
            False for read-only banks (IR, DI) and out-of-range indices
        """
        parsed = parse_address(address)
        self.stats['writes'] += 1
        if not parsed.bank.externally_writable:
            logger.warning(f"PLC {self.controller_id}: cannot write to {parsed.bank.value}")
            return False
        if not self.banks.write(parsed.bank, parsed.index, [value]):
            logger.warning(f"PLC {self.controller_id} write out of range: {address}")
            return False
        return True

    def read_bank(self, bank, start: int, count: int = 1) -> List[int]:
        """
        Read ``count`` consecutive values of a bank (``HR``, ``IR``, ``C``, ``DI``).

        Returns:
            The values, or an empty list for an unknown bank or a range
            outside the bank
        """
        bank_type = BankType.lookup(bank)
        if bank_type is None:
            logger.warning(f"PLC {self.controller_id}: unknown bank '{bank}'")
            return []
        values = self.banks.read(bank_type, start, count)
        if values is None:
            logger.warning(
                f"PLC {self.controller_id}: read {bank_type.value}[{start}:{start + count}] "
                f"out of range"
            )
            return []
        self.stats['reads'] += count
        return values

    def write_bank(self, bank, start: int, values) -> bool:
        """
        Write consecutive holding registers or coils.

        Returns:
            False for an unknown or read-only bank, or a range outside the
            bank (nothing is written in that case)
        """
        bank_type = BankType.lookup(bank)
        if bank_type is None or not bank_type.externally_writable:
            logger.warning(f"PLC {self.controller_id}: bank '{bank}' is not writable")
            return False
        return self._write_range(bank_type, start, values)

    def set_inputs(self, bank, start: int, values) -> bool:
        """Plant-side write of input registers or discrete inputs"""
        bank_type = BankType.lookup(bank)
        if bank_type not in (BankType.INPUT_REGISTER, BankType.DISCRETE_INPUT):
            logger.warning(f"PLC {self.controller_id}: '{bank}' is not an input bank")
            return False
        return self._write_range(bank_type, start, values)

    def _write_range(self, bank_type: BankType, start: int, values) -> bool:
        values = list(values) if isinstance(values, (list, tuple)) else [values]
        if not self.banks.write(bank_type, start, values):
            logger.warning(
                f"PLC {self.controller_id}: write {bank_type.value}[{start}:{start + len(values)}] "
                f"out of range"
            )
            return False
        self.stats['writes'] += len(values)
        return True

    # ── Program ──────────────────────────────────────────────

    def add_rung(self, conditions: Iterable, actions: Iterable) -> Optional[Rung]:
        """
        Append a rung to the program.

        Returns:
            The rung, or None when the definition is invalid (it is logged
            and skipped)
        """
        try:
            rung = Rung.build(list(conditions), list(actions))
        except (TypeError, ValueError) as e:
            logger.error(f"PLC {self.controller_id}: invalid rung skipped: {e}")
            return None
        self._rungs.append(rung)
        return rung

    def add_alarm(
        self,
        name: str,
        address: str,
        type: str,
        setpoint: float,
        deadband: float = 0.0,
        message: str = ""
    ) -> Optional[AlarmDefinition]:
        """
        Add an alarm definition.

        Returns:
            The alarm, or None when the definition is invalid
        """
        try:
            alarm = AlarmDefinition(
                id=len(self._alarms),
                name=name,
                address=address,
                type=type,
                setpoint=setpoint,
                deadband=deadband,
                message=message
            )
        except (TypeError, ValueError) as e:
            logger.error(f"PLC {self.controller_id}: invalid alarm '{name}' skipped: {e}")
            return None
        self._alarms.append(alarm)
        return alarm

    def add_alarm_listener(self, callback: AlarmCallback) -> Callable[[], None]:
        """Register an extra alarm callback; returns a remover"""
        self._alarm_callbacks.append(callback)

        def remove() -> None:
            if callback in self._alarm_callbacks:
                self._alarm_callbacks.remove(callback)

        return remove

    # ── Status ───────────────────────────────────────────────

    def alarms(self) -> List[Dict[str, Any]]:
        return [alarm.to_dict() for alarm in self._alarms]

    def active_alarms(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": alarm.name,
                "message": alarm.message,
                "triggered_at": alarm.triggered_at,
            }
            for alarm in self._alarms if alarm.active
        ]

    def alarm_log(self, limit: int = 50) -> List[Dict[str, Any]]:
        entries = list(self._alarm_log)[-limit:] if limit > 0 else []
        return [entry.to_dict() for entry in entries]

    def status(self) -> Dict[str, Any]:
        return {
            "id": self.controller_id,
            "name": self.name,
            "status": self._state.value,
            "scan_rate_ms": self.scan_rate_ms,
            "scan_count": self._scan_count,
            "skipped_scans": self._skipped_scans,
            "last_scan": self._last_scan,
            "scan_time_ms": round(self._scan_time_ms, 2),
            "max_scan_time_ms": round(self._max_scan_time_ms, 2),
            "rung_count": len(self._rungs),
            "stats": dict(self.stats),
            "alarms": self.active_alarms(),
        }
