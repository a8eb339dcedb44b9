#!/usr/bin/env python
"""
Start the Module Store MCP server from a source checkout.

Equivalent to the installed ``module-store-mcp`` console script.
"""
import os
import sys

SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


if __name__ == "__main__":
    try:
        from module_store_mcp.mcp_server import main
    except ModuleNotFoundError as exc:
        sys.stderr.write(
            f"module-store-mcp cannot start, {exc.name or exc} is not installed.\n"
            "Run `pip install -e .` (mcp, PyYAML and xxhash) in this directory.\n"
        )
        raise SystemExit(1) from exc
    main()
