"""Entry point for the devsearch MCP server."""

from devsearch.server import create_server


def main() -> None:
    """Run the devsearch MCP server."""
    server = create_server()
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
