# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""MCP Server Protocol Layer for codebase indexing.

This module exposes indexing over MCP with no business logic of its own.
Indexing is delegated to CodebaseIndexer and artifact inspection to the
serializer module.
"""

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from codebase_index.config import Config
from codebase_index.indexer import CodebaseIndexer
from codebase_index.serializer import artifact_info

logger = logging.getLogger(__name__)

SERVER_NAME = "codebase-index"


class CodebaseIndexMCPServer:
    """MCP Protocol Layer for codebase indexing.

    Responsibilities:
    - Initialize MCP server and register tools
    - Translate tool invocations into indexer / serializer calls
    - Format results as JSON-compatible tool responses
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize MCP server.

        Args:
            config: Configuration object. If None, loads from default location.
        """
        if config is None:
            config = Config()
        self.config = config

        self.mcp = FastMCP(name=SERVER_NAME)
        self._register_tools()

        logger.info("CodebaseIndexMCPServer initialized")

    def index_codebase(self, root_directory: str, output_path: str) -> Dict[str, Any]:
        """Index a directory and write the artifact.

        Raises:
            ScanError: If the root directory cannot be enumerated.
            ArtifactWriteError: If the artifact cannot be written.
        """
        indexer = CodebaseIndexer(root_directory, config=self.config)
        return indexer.run(output_path).to_dict()

    def describe_index(self, artifact_path: str) -> Dict[str, Any]:
        """Summarize an existing artifact.

        Raises:
            OSError: If the artifact cannot be read.
            InvalidDataError: If the artifact is not valid.
        """
        info = artifact_info(Path(artifact_path).read_bytes())
        info["artifact_path"] = artifact_path
        return info

    def _register_tools(self) -> None:
        """Register MCP tools with the server.

        Registers:
        - index_codebase: Index a directory into an artifact
        - describe_index: Summarize an existing artifact
        """

        @self.mcp.tool()
        async def index_codebase(
            root_directory: str,
            output_path: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Index the types and members of a source tree into a compact artifact.

            Args:
                root_directory: Directory to index
                output_path: Where to write the index artifact
                ctx: MCP context for logging and progress

            Returns:
                Dictionary with:
                - state: Final run state ("done" or "cancelled")
                - output_path: Path of the written artifact
                - issues: Files and directories left out, with reasons
                - metadata: Duration, file count, token count, size, compression ratio
                - summary: Type, method and property counts
            """
            await ctx.info(f"Indexing {root_directory}")
            try:
                response = self.index_codebase(root_directory, output_path)
                await ctx.info(f"Index written to {output_path}")
                return response
            except Exception as e:
                await ctx.error(f"Indexing {root_directory} failed: {e}")
                raise

        @self.mcp.tool()
        async def describe_index(
            artifact_path: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Describe an existing index artifact without returning its full contents.

            Args:
                artifact_path: Path of the index artifact
                ctx: MCP context for logging and progress

            Returns:
                Dictionary with format, compression, size, schema and counts.
            """
            try:
                return self.describe_index(artifact_path)
            except Exception as e:
                await ctx.error(f"Cannot describe {artifact_path}: {e}")
                raise

        logger.info("MCP tools registered: index_codebase, describe_index")

    def run(self, transport: str = "stdio") -> None:
        """Run the MCP server.

        Args:
            transport: "stdio" (default), "streamable-http" or "sse"
        """
        logger.info(f"Starting MCP server with {transport} transport")
        self.mcp.run(transport=transport)  # type: ignore[arg-type]


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Codebase index MCP server")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file. Default: ./.codebase_index.yml",
    )
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "streamable-http", "sse"],
        default="stdio",
        help="Transport type for MCP server. Default: stdio",
    )
    return parser.parse_args()


def main() -> None:
    """Main entry point for MCP server."""
    args = parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    server = CodebaseIndexMCPServer(config=Config(args.config))
    server.run(transport=args.transport)


if __name__ == "__main__":
    main()
