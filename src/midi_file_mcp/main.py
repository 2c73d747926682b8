"""midi-file-mcp: an MCP server for editing Standard MIDI Files.

Loads configuration, wires the session repository into the FastMCP tool
surface and serves over stdio.
"""

from __future__ import annotations

import logging
import sys

from fastmcp import FastMCP

from midi_file_mcp.config import ServerConfig, load_config
from midi_file_mcp.server.repository import SessionRepository
from midi_file_mcp.server.tools import register_tools

INSTRUCTIONS = (
    "MIDI file editor. Open a file with open_midi (or build one with "
    "create_midi), edit it through the returned midiId, then commit or save_as. "
    "Positions are ticks; use to_ticks / to_bbt to convert. Errors start with '!'."
)


def create_server(config: ServerConfig) -> FastMCP:
    repo = SessionRepository(config.projects)
    mcp = FastMCP("midi-file-mcp", instructions=INSTRUCTIONS)
    register_tools(mcp, repo)
    return mcp


def main() -> None:
    config = load_config()
    # stdout carries the MCP stdio transport
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "serving projects: %s", ", ".join(sorted(config.projects))
    )
    create_server(config).run()


if __name__ == "__main__":
    main()
