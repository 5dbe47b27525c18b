import argparse
import json
import logging
import sys

from .config import Dialect, dialect_names
from .errors import LitmusError
from .exporter import export_litmus_text
from .inference import with_dependency_edges
from .model import TraceGraph
from .parser import parse_litmus_text

logger = logging.getLogger(__name__)


def read_text(path):
    if path == "-":
        return sys.stdin.read()
    with open(path, "r") as f:
        return f.read()


def write_text(path, text):
    if not path or path == "-":
        sys.stdout.write(text)
        return
    with open(path, "w") as f:
        f.write(text)
    logger.info("Wrote %s", path)


def dump_graph(graph):
    return json.dumps(graph.to_dict(), indent=2) + "\n"


def load_graph(path):
    try:
        data = json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        raise LitmusError(f"{path} is not a JSON graph: {exc}") from None
    return TraceGraph.from_dict(data)


# ---------- Subcommands ----------

def cmd_parse(args):
    graph = parse_litmus_text(read_text(args.litmus_file), fallback_title=args.title)
    write_text(args.output, dump_graph(graph))


def cmd_export(args):
    graph = load_graph(args.graph_file)
    write_text(args.output, export_litmus_text(graph, args.dialect, show_all_nodes=args.show_all))


def cmd_convert(args):
    graph = parse_litmus_text(read_text(args.litmus_file), fallback_title=args.title)
    write_text(args.output, export_litmus_text(graph, args.dialect, show_all_nodes=args.show_all))


def cmd_deps(args):
    graph = with_dependency_edges(load_graph(args.graph_file))
    write_text(args.output, dump_graph(graph))


def build_parser():
    parser = argparse.ArgumentParser(
        prog="litmusgraph",
        description="Translate between herd .litmus files and trace graphs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Import a .litmus file as a JSON graph")
    p.add_argument("litmus_file", help="Input litmus test file ('-' for stdin)")
    p.add_argument("--title", help="Title to use instead of the header's test name")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")
    p.set_defaults(func=cmd_parse)

    dialects = sorted(dialect_names)

    p = sub.add_parser("export", help="Export a JSON graph as a .litmus file")
    p.add_argument("graph_file", help="Input JSON graph ('-' for stdin)")
    p.add_argument("--dialect", choices=dialects, default=Dialect.MACRO.value)
    p.add_argument("--show-all", action="store_true", help="Export nodes of both branch futures")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("convert", help="Import a .litmus file and export it again")
    p.add_argument("litmus_file", help="Input litmus test file ('-' for stdin)")
    p.add_argument("--title", help="Title to use instead of the header's test name")
    p.add_argument("--dialect", choices=dialects, default=Dialect.MACRO.value)
    p.add_argument("--show-all", action="store_true", help="Export nodes of both branch futures")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")
    p.set_defaults(func=cmd_convert)

    p = sub.add_parser("deps", help="Add derived ad/cd/dd edges to a JSON graph")
    p.add_argument("graph_file", help="Input JSON graph ('-' for stdin)")
    p.add_argument("-o", "--output", help="Output file (default: stdout)")
    p.set_defaults(func=cmd_deps)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        args.func(args)
    except LitmusError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
