"""Command-line entry point."""

from __future__ import annotations

import os
import sys

from .compiler import STAGES, CompileOptions, CompileResult, compile_batch, index_source
from .oracle import CatalogOracle, PythonOracle, TypeOracle
from .runtime import ResourceBundle

USAGE: str = """\
fx2py [OPTIONS] INPUT...

Compile markup documents to Python builder modules. INPUT is a document
or a directory searched for *.fxml files.

Options:
  --types FILE        JSON type catalog (default: introspect Python classes)
  --package NAME      Package prefix for generated modules
  --root DIR          Source root; document paths are relative to it
  --resources FILE    key=value resource bundle used to check %key values
  --out-dir DIR       Write modules under DIR instead of stdout
  --stop-at STAGE     Stop after stage: parse, resolve, generate
  --jobs N            Compile N documents in parallel
  --index             Also emit a builder index module
  --help              Show this help message
"""

INDEX_MODULE = "builders"


class Args:
    def __init__(self) -> None:
        self.types: str | None = None
        self.package: str = ""
        self.root: str | None = None
        self.resources: str | None = None
        self.out_dir: str | None = None
        self.stop_at: str = "generate"
        self.jobs: int | None = None
        self.index: bool = False
        self.inputs: list[str] = []


def usage_error(msg: str) -> None:
    print("error: " + msg, file=sys.stderr)
    sys.exit(2)


def parse_args(argv: list[str]) -> Args:
    args = Args()
    takes_value = {"--types", "--package", "--root", "--resources", "--out-dir", "--stop-at", "--jobs"}
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--help" or arg == "-h":
            print(USAGE, end="")
            sys.exit(0)
        if arg in takes_value:
            if i + 1 >= len(argv):
                usage_error(arg + " requires an argument")
            value = argv[i + 1]
            i += 2
            if arg == "--types":
                args.types = value
            elif arg == "--package":
                args.package = value
            elif arg == "--root":
                args.root = value
            elif arg == "--resources":
                args.resources = value
            elif arg == "--out-dir":
                args.out_dir = value
            elif arg == "--stop-at":
                args.stop_at = value
            elif arg == "--jobs":
                if not value.isdigit() or int(value) < 1:
                    usage_error("--jobs takes a positive integer")
                args.jobs = int(value)
        elif arg == "--index":
            args.index = True
            i += 1
        elif arg.startswith("-"):
            usage_error("unknown flag '" + arg + "'")
        else:
            args.inputs.append(arg)
            i += 1
    if args.stop_at not in STAGES:
        usage_error("unknown stage '" + args.stop_at + "'")
    if args.package and not all(p.isidentifier() for p in args.package.split(".")):
        usage_error("invalid package name '" + args.package + "'")
    if not args.inputs:
        usage_error("no input provided")
    return args


def collect_inputs(inputs: list[str]) -> list[str] | None:
    """Expand directories into the documents they contain."""
    paths: list[str] = []
    for name in inputs:
        if os.path.isdir(name):
            found: list[str] = []
            for dirpath, _, filenames in os.walk(name):
                for filename in filenames:
                    if filename.endswith(".fxml"):
                        found.append(os.path.join(dirpath, filename))
            paths.extend(sorted(found))
        elif os.path.isfile(name):
            paths.append(name)
        else:
            print("error: cannot open '" + name + "'", file=sys.stderr)
            return None
    return paths


def read_sources(paths: list[str]) -> dict[str, str] | None:
    sources: dict[str, str] = {}
    for path in paths:
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError:
            print("error: cannot open '" + path + "'", file=sys.stderr)
            return None
        try:
            sources[path] = raw.decode("utf-8")
        except ValueError:
            print("error: invalid utf-8 in '" + path + "'", file=sys.stderr)
            return None
    return sources


def load_oracle(types: str | None) -> TypeOracle | None:
    if types is None:
        return PythonOracle()
    try:
        return CatalogOracle.load(types)
    except OSError:
        print("error: cannot open '" + types + "'", file=sys.stderr)
    except (ValueError, KeyError, TypeError) as e:
        print("error: bad type catalog '" + types + "': " + str(e), file=sys.stderr)
    return None


def load_resources(path: str | None) -> tuple[dict[str, str] | None, int]:
    if path is None:
        return None, 0
    try:
        return ResourceBundle.load(path), 0
    except OSError:
        print("error: cannot open '" + path + "'", file=sys.stderr)
        return None, 1


def write_file(out_dir: str, relpath: str, text: str) -> int:
    target = os.path.join(out_dir, relpath)
    try:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        # Every generated package directory needs an __init__.py
        directory = os.path.dirname(relpath)
        while directory:
            init = os.path.join(out_dir, directory, "__init__.py")
            if not os.path.exists(init):
                with open(init, "w") as f:
                    f.write("")
            directory = os.path.dirname(directory)
        with open(target, "w") as f:
            f.write(text)
    except OSError:
        print("error: cannot write '" + target + "'", file=sys.stderr)
        return 1
    return 0


def report(results: list[CompileResult]) -> None:
    for result in results:
        for d in result.diagnostics:
            print(d.render(), file=sys.stderr)


def emit(results: list[CompileResult], args: Args) -> int:
    if args.stop_at == "parse":
        return 0
    if args.stop_at == "resolve":
        for result in results:
            if result.resolved is not None:
                print(result.path + ": " + " ".join(result.resolved.order))
        return 0
    units = [r.unit for r in results if r.unit is not None]
    outputs: list[tuple[str, str]] = [(u.filename(), u.source) for u in units]
    if args.index:
        index_name = args.package + "." + INDEX_MODULE if args.package else INDEX_MODULE
        outputs.append((index_name.replace(".", "/") + ".py", index_source(results, args.package)))
    if args.out_dir is None:
        for i, (relpath, text) in enumerate(outputs):
            if len(outputs) > 1:
                if i > 0:
                    print()
                print("# " + relpath)
            print(text, end="")
        return 0
    for relpath, text in outputs:
        if write_file(args.out_dir, relpath, text) != 0:
            return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    paths = collect_inputs(args.inputs)
    if paths is None:
        return 1
    if not paths:
        print("error: no documents found", file=sys.stderr)
        return 2
    sources = read_sources(paths)
    if sources is None:
        return 1
    oracle = load_oracle(args.types)
    if oracle is None:
        return 1
    resources, err = load_resources(args.resources)
    if err != 0:
        return err
    options = CompileOptions(args.package, args.root, resources, args.jobs, stop_at=args.stop_at)
    results = compile_batch(sources, oracle, options)
    report(results)
    failed = [r for r in results if not r.ok()]
    code = emit(results, args)
    if failed:
        return 1
    return code


if __name__ == "__main__":
    sys.exit(main())
