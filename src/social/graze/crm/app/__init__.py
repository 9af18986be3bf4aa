"""
MCP-CRM Application Layer

This package implements the web application layer, handling HTTP requests and responses using
the aiohttp framework. It provides the OAuth discovery and authorization endpoints, the MCP
endpoint in both its streamable HTTP and legacy SSE shapes, and internal health endpoints.

Key Components:
- server.py: Web server configuration and middleware setup
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for different endpoints
- tasks.py: Background tasks for health monitoring and the optional expiry sweep
- cors.py: CORS handling for cross-origin requests
- metrics.py: Vendor-agnostic metrics client
- util/: Operator command line utilities

The application uses several middleware layers:
- CORS middleware for preflight requests and response headers
- Statsd middleware for metrics collection
- Sentry middleware for error reporting

It provides the following main endpoints:
- OAuth discovery documents (/.well-known/*)
- OAuth endpoints (/oauth/*, aliased at / and /mcp/)
- MCP endpoints (/mcp, /v1/mcp, /sse, /messages)
- Internal endpoints (/health, /internal/alive, /internal/ready)
"""
