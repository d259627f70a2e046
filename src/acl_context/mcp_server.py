# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""MCP protocol layer for the ACL context server.

This module registers the ``acl_*`` tools on a FastMCP server and contains
ZERO business logic: every tool delegates to ContextService, logs through
the MCP context, and re-raises failures so the client sees a tool error.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from acl_context.config import Config, ConfigurationError, get_workspace_from_env
from acl_context.logging_setup import setup_logging
from acl_context.service import ContextService

logger = logging.getLogger(__name__)

TOOL_NAMES = (
    "acl_get_context",
    "acl_get_related",
    "acl_refresh",
    "acl_save_session",
    "acl_restore_session",
    "acl_list_sessions",
    "acl_save_artifact",
    "acl_get_artifacts",
    "acl_get_stats",
)


class ContextMCPServer:
    """MCP protocol layer for one workspace.

    Responsibilities:
    - Initialize the FastMCP server and register tools
    - Translate tool invocations into service calls
    - Report progress and failures through the MCP context
    - Handle server lifecycle (startup, shutdown)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        service: Optional[ContextService] = None,
    ):
        """Initialize MCP server.

        Args:
            config: Configuration object. If None, loads it for the workspace
                named by the environment.
            service: Service layer instance. If None, creates the default one.
        """
        if config is None:
            config = Config(get_workspace_from_env())
        self.config = config
        self.service = service if service is not None else ContextService(config)

        self.mcp = FastMCP(name=config.server_name)
        self._register_tools()

        logger.info("ContextMCPServer initialized")

    async def _call(
        self, ctx: Context[ServerSession, None], action: str, func: Callable[[], Any]
    ) -> Any:
        await ctx.info(action)
        try:
            return func()
        except Exception as e:
            await ctx.error(f"{action} failed: {e}")
            raise

    def _register_tools(self) -> None:
        """Register the acl_* tools with the server."""

        @self.mcp.tool()
        async def acl_get_context(
            path: str,
            ctx: Context[ServerSession, None],
            depth: int = 3,
        ) -> Dict[str, Any]:
            """Get the structural skeleton of a file, or the file map of a directory.

            Returns exports, imports, classes and functions without the file
            contents. Use this to understand code structure cheaply.

            Args:
                path: File or directory path, relative to the workspace root
                ctx: MCP context for logging
                depth: For directories, how many levels to descend (default: 3)
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Getting context for {path}",
                lambda: self.service.get_context(path, depth),
            )
            return result

        @self.mcp.tool()
        async def acl_get_related(
            path: str,
            ctx: Context[ServerSession, None],
            depth: int = 1,
            max_results: Optional[int] = None,
        ) -> Dict[str, Any]:
            """Get files related to a file through import relationships.

            Args:
                path: File path, relative to the workspace root
                ctx: MCP context for logging
                depth: Import hops to traverse (default: 1)
                max_results: Maximum number of related files (default: config)
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Finding files related to {path}",
                lambda: self.service.get_related(path, depth, max_results),
            )
            return result

        @self.mcp.tool()
        async def acl_refresh(
            paths: List[str],
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Force a re-parse of the given files after editing them.

            Args:
                paths: File paths, relative to the workspace root
                ctx: MCP context for logging
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Refreshing {len(paths)} file(s)",
                lambda: self.service.refresh(paths),
            )
            return result

        @self.mcp.tool()
        async def acl_save_session(
            session_id: str,
            state: Dict[str, Any],
            ctx: Context[ServerSession, None],
            name: Optional[str] = None,
        ) -> Dict[str, Any]:
            """Save the current working state so a later session can resume it.

            Args:
                session_id: Unique session identifier
                state: active_files, recent_files, context_summary, decisions, metadata
                ctx: MCP context for logging
                name: Optional human-readable session name
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Saving session {session_id}",
                lambda: self.service.save_session(session_id, state, name),
            )
            return result

        @self.mcp.tool()
        async def acl_restore_session(
            ctx: Context[ServerSession, None],
            session_id: Optional[str] = None,
        ) -> Dict[str, Any]:
            """Restore a saved session; the most recent one when no id is given.

            Args:
                ctx: MCP context for logging
                session_id: Session to restore (default: latest)
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Restoring session {session_id or '(latest)'}",
                lambda: self.service.restore_session(session_id),
            )
            return result

        @self.mcp.tool()
        async def acl_list_sessions(ctx: Context[ServerSession, None]) -> Dict[str, Any]:
            """List the saved sessions of this workspace, most recent first."""
            result: Dict[str, Any] = await self._call(
                ctx, "Listing sessions", self.service.list_sessions
            )
            return result

        @self.mcp.tool()
        async def acl_save_artifact(
            artifact_id: str,
            artifact_type: str,
            scope: str,
            content: str,
            ctx: Context[ServerSession, None],
            metadata: Optional[Dict[str, Any]] = None,
        ) -> Dict[str, Any]:
            """Attach a note to a file or directory.

            Args:
                artifact_id: Unique artifact identifier
                artifact_type: One of summary, architecture, decision, note
                scope: File or directory path, relative to the workspace root
                content: Artifact text
                ctx: MCP context for logging
                metadata: Optional JSON metadata
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Saving {artifact_type} artifact {artifact_id}",
                lambda: self.service.save_artifact(
                    artifact_id, artifact_type, scope, content, metadata
                ),
            )
            return result

        @self.mcp.tool()
        async def acl_get_artifacts(
            scope: str,
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Get the artifacts of a file or directory and everything below it.

            Args:
                scope: File or directory path, relative to the workspace root
                ctx: MCP context for logging
            """
            result: Dict[str, Any] = await self._call(
                ctx,
                f"Getting artifacts for {scope}",
                lambda: self.service.get_artifacts(scope),
            )
            return result

        @self.mcp.tool()
        async def acl_get_stats(ctx: Context[ServerSession, None]) -> Dict[str, Any]:
            """Get cache, store and watcher statistics."""
            result: Dict[str, Any] = await self._call(
                ctx, "Collecting statistics", self.service.get_stats
            )
            return result

        logger.info(f"MCP tools registered: {', '.join(TOOL_NAMES)}")

    def start(self) -> None:
        """Start background components (file watcher, optional initial scan)."""
        self.service.start()

    def run(self, transport: str = "stdio") -> None:
        """Run the MCP server.

        Args:
            transport: Transport type to use. Options:
                - "stdio": Standard input/output (default)
                - "streamable-http": HTTP transport
                - "sse": Server-sent events transport
        """
        logger.info(f"Starting MCP server with {transport} transport")
        self.mcp.run(transport=transport)  # type: ignore[arg-type]

    def shutdown(self) -> None:
        """Shutdown the MCP server and cleanup resources."""
        logger.info("Shutting down MCP server")
        self.service.shutdown()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="ACL context MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root. Default: ACL_WORKSPACE_PATH, WORKSPACE_PATH or the cwd",
    )
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "streamable-http", "sse"],
        default="stdio",
        help="Transport type for MCP server. Default: stdio",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level. Default: INFO",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point for the MCP server.

    Logs go to ``<workspace>/.acl/logs`` and stderr; stdout belongs to the
    stdio transport.
    """
    args = parse_args()

    workspace = args.workspace.resolve() if args.workspace else get_workspace_from_env()
    try:
        config = Config(workspace)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(log_dir=config.log_dir, log_level=getattr(logging, args.log_level))

    server = ContextMCPServer(config)
    logger.info(f"Starting MCP server for workspace {config.workspace_path}")
    server.start()
    try:
        server.run(transport=args.transport)
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
