from pathlib import Path

from brainbot.brains.schema import BrainConfig
from brainbot.channels.base import BotChannel
from brainbot.config.schema import BotConfig
from brainbot.health.monitor import HealthMonitor
from brainbot.orchestrator.registry import BotInstance, BotRegistry, BotStatus


class _LivenessChannel(BotChannel):
    def __init__(self, token: str, alive: bool = True, check_error: bool = False) -> None:
        super().__init__(token)
        self.alive = alive
        self.check_error = check_error
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1
        self._running = True

    async def stop(self) -> None:
        self.stopped += 1
        self._running = False

    def is_alive(self) -> bool:
        if self.check_error:
            raise RuntimeError("liveness check failed")
        return self.alive

    async def send_text(self, chat_id: str, text: str, link_preview: bool = False) -> int | None:
        return None

    async def send_voice(self, chat_id: str, audio_path: Path) -> None:
        pass

    async def send_photo(self, chat_id: str, image_path: Path, caption: str | None = None) -> None:
        pass

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        pass

    async def delete_message(self, chat_id: str, message_id: int) -> None:
        pass

    async def download_media(self, ref: str) -> bytes:
        return b""


class _Factory:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[_LivenessChannel] = []

    def __call__(self, token: str, bot_id: str) -> _LivenessChannel:
        if self.fail:
            raise RuntimeError("invalid token")
        channel = _LivenessChannel(token)
        self.created.append(channel)
        return channel


def _monitor(channel: _LivenessChannel, factory: _Factory, bound: list | None = None):
    bots = BotRegistry()
    instance = BotInstance(
        bot_id="bot1",
        config=BotConfig(id="bot1", token="tok", brain="b"),
        channel=channel,
        brain=BrainConfig(system_prompt="x"),
    )
    bots.add(instance)
    bind = (lambda inst: bound.append(inst.channel)) if bound is not None else (lambda inst: None)
    monitor = HealthMonitor(bots, factory, bind, error_threshold=3, channel_error_threshold=5, recovery_delay_s=0)
    return monitor, instance


async def test_three_failed_checks_trigger_exactly_one_recovery() -> None:
    factory = _Factory()
    bound: list = []
    channel = _LivenessChannel("tok", check_error=True)
    monitor, instance = _monitor(channel, factory, bound)

    for _ in range(2):
        monitor.check_bot(instance)
    assert not monitor.is_recovering("bot1")

    monitor.check_bot(instance)
    monitor.check_bot(instance)
    assert monitor.is_recovering("bot1")

    await monitor.drain()

    assert monitor.recovery_count == 1
    assert len(factory.created) == 1
    assert channel.stopped == 1
    assert instance.channel is factory.created[0]
    assert instance.channel.started == 1
    assert bound == [instance.channel]
    assert instance.status == BotStatus.HEALTHY
    assert instance.error_count == 0
    assert not monitor.is_recovering("bot1")


async def test_dead_channel_is_marked_unhealthy_and_recovered() -> None:
    factory = _Factory()
    monitor, instance = _monitor(_LivenessChannel("tok", alive=False), factory)

    monitor.check_all()
    assert instance.status == BotStatus.UNHEALTHY

    await monitor.drain()

    assert instance.status == BotStatus.HEALTHY
    assert factory.created[0].token == "tok"


async def test_alive_channel_clears_unhealthy_state() -> None:
    monitor, instance = _monitor(_LivenessChannel("tok", alive=True), _Factory())
    instance.status = BotStatus.UNHEALTHY
    instance.error_count = 2

    monitor.check_bot(instance)

    assert instance.status == BotStatus.HEALTHY
    assert instance.error_count == 0


async def test_failed_recovery_marks_bot_failed_and_stops_checking() -> None:
    channel = _LivenessChannel("tok", alive=False)
    monitor, instance = _monitor(channel, _Factory(fail=True))

    monitor.check_bot(instance)
    await monitor.drain()

    assert instance.status == BotStatus.FAILED

    channel.check_error = True
    monitor.check_bot(instance)
    assert instance.error_count == 0
    assert not monitor.is_recovering("bot1")


async def test_polling_errors_trigger_recovery_at_threshold() -> None:
    factory = _Factory()
    monitor, instance = _monitor(_LivenessChannel("tok"), factory)

    for _ in range(4):
        monitor.record_channel_error("bot1", RuntimeError("conflict"))
    assert instance.status == BotStatus.HEALTHY
    assert not monitor.is_recovering("bot1")

    monitor.record_channel_error("bot1", RuntimeError("conflict"))
    assert instance.status == BotStatus.UNHEALTHY
    monitor.record_channel_error("bot1", RuntimeError("conflict"))

    await monitor.drain()

    assert monitor.recovery_count == 1
    assert instance.status == BotStatus.HEALTHY


async def test_stop_cancels_loop() -> None:
    monitor, _ = _monitor(_LivenessChannel("tok"), _Factory())
    await monitor.start()
    assert monitor.status()["enabled"] is True

    monitor.stop()

    assert monitor.status()["enabled"] is False
    assert monitor.status()["bots"] == {"bot1": "healthy"}
