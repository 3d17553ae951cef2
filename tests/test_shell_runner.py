import sys

from os_commands import Command
from shell_runner import CallbackListener, CommandListener, ShellRunner, StreamKind


def python_command(code: str) -> Command:
    return Command(program=sys.executable, args=("-c", code), description="python helper", encoding="utf-8")


class RecordingListener(CommandListener):
    def __init__(self):
        self.events = []

    def on_start(self, command):
        self.events.append(("start", command.description))

    def on_output(self, text, stream):
        self.events.append((stream.value, text))

    def on_end(self, exit_code):
        self.events.append(("end", exit_code))


def test_run_streams_both_streams_and_reports_exit_code():
    listener = RecordingListener()
    code = "import sys; print('one'); print('two'); sys.stderr.write('oops\\n'); sys.exit(3)"
    exit_code = ShellRunner().run(python_command(code), listener)

    assert exit_code == 3
    assert listener.events[0] == ("start", "python helper")
    assert listener.events[-1] == ("end", 3)
    stdout = [text for kind, text in listener.events if kind == "stdout"]
    stderr = [text for kind, text in listener.events if kind == "stderr"]
    assert stdout == ["one", "two"]
    assert stderr == ["oops"]


def test_spawn_failure_is_reported_not_raised():
    listener = RecordingListener()
    command = Command(program="definitely-not-a-real-tool-xyz", args=("/x",), description="missing tool")
    assert ShellRunner().run(command, listener) is None
    failures = [text for kind, text in listener.events if kind == "stderr"]
    assert failures and "definitely-not-a-real-tool-xyz" in failures[0]
    assert listener.events[-1] == ("end", None)


def test_listener_is_deregistered_after_run():
    runner = ShellRunner()
    listener = RecordingListener()
    runner.run(python_command("print('first')"), listener)
    count = len(listener.events)
    runner.run(python_command("print('second')"))
    assert len(listener.events) == count


def test_listen_scope_collects_every_command_inside():
    runner = ShellRunner()
    listener = RecordingListener()
    with runner.listen(listener):
        runner.run(python_command("print('a')"))
        runner.run(python_command("print('b')"))
    runner.run(python_command("print('c')"))
    stdout = [text for kind, text in listener.events if kind == "stdout"]
    assert stdout == ["a", "b"]


def test_capture_buffers_large_output():
    result = ShellRunner().capture(python_command("print('x' * 100000); print('y' * 100000)"))
    assert result.ok
    assert len(result.stdout) >= 200000
    assert result.stderr == ""


def test_capture_spawn_failure():
    result = ShellRunner().capture(Command(program="definitely-not-a-real-tool-xyz"))
    assert not result.ok
    assert result.exit_code is None
    assert result.spawn_error == result.stderr
    assert "definitely-not-a-real-tool-xyz" in result.spawn_error


def test_callback_listener_formats_messages():
    messages = []
    listener = CallbackListener(messages.append)
    listener.on_start(Command(program="pnputil", args=("/enum-drivers",)))
    listener.on_output("   ", StreamKind.STDOUT)
    listener.on_output("Driver package added", StreamKind.STDOUT)
    listener.on_output("Access denied", StreamKind.STDERR)
    listener.on_end(0)
    listener.on_end(None)
    assert messages == [
        "pnputil /enum-drivers",
        "Driver package added",
        "ERROR: Access denied",
        "Command finished with exit code 0",
        "ERROR: Command did not report an exit code",
    ]
