"""storylua CLI entry point."""
import argparse
import logging
import os
import sys

logger = logging.getLogger(__name__)


def main(argv=None):
    """Command-line interface for storylua."""
    parser = argparse.ArgumentParser(
        prog='storylua',
        description='storylua: run Lua-subset story scripts outside the editor',
    )
    parser.add_argument('file', nargs='?', help='.lua script file to run')
    parser.add_argument('-c', '--command', help='Execute a script string')
    parser.add_argument('-i', '--interactive', action='store_true',
                        help='Start interactive REPL mode')
    parser.add_argument('--max-iterations', type=int, default=None, metavar='N',
                        help='Loop iteration cap (default: 10000)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Seed for math.random')
    parser.add_argument('--vars', action='store_true',
                        help='Print the variables left after the run')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--version', action='store_true', help='Show version and exit')

    args = parser.parse_args(argv)

    if args.version:
        from storylua import __version__
        print(f'storylua {__version__}')
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    from storylua.runtime.interpreter import MAX_ITERATIONS, LuaEngine
    engine = LuaEngine(
        max_iterations=args.max_iterations or MAX_ITERATIONS,
        seed=args.seed,
    )

    status = 0

    # ── -c / --command ───────────────────────────────────────────────────────
    if args.command:
        status = _run(engine, args.command)

    # ── run a script file ────────────────────────────────────────────────────
    elif args.file:
        path = args.file
        if not os.path.exists(path):
            print(f'[error] File not found: {path}', file=sys.stderr)
            return 1
        with open(path, 'r', encoding='utf-8') as fh:
            source = fh.read()
        logger.debug('running %s', path)
        status = _run(engine, source)

    if args.interactive or not (args.command or args.file):
        _start_repl(engine)

    if args.vars:
        _print_vars(engine)
    return status


def _run(engine, source):
    """Execute *source*, print its output and errors; return an exit status."""
    result = engine.execute(source)
    for line in result.output:
        print(line)
    for err in result.errors:
        print(f'[error] {err}', file=sys.stderr)
    if result.return_value is not None:
        print(f'=> {result.return_value!r}')
    return 0 if result.success else 1


def _print_vars(engine):
    for name, value in sorted(engine.get_all_variables().items()):
        print(f'{name} = {value!r}')


def _start_repl(engine):
    """Simple interactive REPL."""
    from storylua import __version__
    from storylua.parser import split_statements
    print(f'storylua {__version__} interactive mode')
    print('Type your script, or "exit" / "quit" to stop.\n')

    buf: list = []

    while True:
        try:
            prompt = '... ' if buf else '>>> '
            line = input(prompt)
        except (EOFError, KeyboardInterrupt):
            print()
            break

        stripped = line.strip()

        if not buf and stripped.lower() in ('exit', 'quit'):
            break

        buf.append(line)
        combined = '\n'.join(buf)

        # keep buffering while the last block is still open
        segments = split_statements(combined)
        if segments and not segments[-1].terminated:
            continue

        if combined.strip():
            _run(engine, combined)
        buf = []
