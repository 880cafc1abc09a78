import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pawx.pawx_runtime import ScriptRunner
from pawx.pawx_printer import Printer


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def _stream_stdout(event: dict):
    """Prints `meow` output as it is emitted."""
    if event.get('topics') == ['stdout']:
        print(event.get('message', ''), flush=True)


async def run_script_file(file_path: str):
    """Run a PAWX script file non-interactively and exit with appropriate status."""
    runner = ScriptRunner()
    runner.evaluator.listeners.append(_stream_stdout)
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    runner.source_dir = str(p.parent.resolve())
    try:
        result = await runner.handle_script(source)
    finally:
        runner.close()
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


async def repl():
    print("PAWX REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    printer = Printer()
    runner.source_dir = str(Path.cwd())
    runner.evaluator.listeners.append(_stream_stdout)

    try:
        while True:
            try:
                raw = await ainput(">> ")
                if raw == "":
                    raise EOFError
                line = raw.strip()
                if not line:
                    continue
                if line == "exit":
                    break

                result = await runner.handle_script(line)
                if result.status == 'error':
                    print(result.format_error(), file=sys.stderr)
                    continue
                if result.value is not None:
                    print(printer.pformat(result.value))
            except EOFError:
                print("\nExiting.")
                break
    finally:
        runner.close()


async def main(argv: Optional[List[str]] = None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = sys.argv[1:] if argv is None else argv
    if args and not args[0].startswith("-"):
        await run_script_file(args[0])
        return
    await repl()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    cli()
