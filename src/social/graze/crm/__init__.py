"""
MCP-CRM - a multi-tenant CRM served over the Model Context Protocol

This package implements a CRM whose only external interface is an MCP endpoint (JSON-RPC 2.0
over HTTP), together with the OAuth 2.1 authorization-code flow that lets an AI client obtain a
bearer token without ever touching a CRM user interface.

Key Components:
- app: Web application layer with request handlers and server configuration
- auth: Bearer token claim decoding and PKCE challenge computation
- mcp: The JSON-RPC dispatcher and the static tool catalog
- crm: Tenant-scoped CRM capabilities (accounts, contacts, opportunities, tasks, reminders,
  search, audit log, tenant and user administration)
- model: Database models for tenants, users, CRM records and the ephemeral OAuth relations

Architecture Overview:
1. Authorization Flow:
   - Client discovers the authorization server and registers as a public client
   - The authorize endpoint records the PKCE challenge and hands off to the sign-in app
   - The sign-in app mints a short-lived single-use code bound to the user's bearer token
   - The client exchanges the code for the bearer token

2. Tool Invocation:
   - Every JSON-RPC request is classified as public or authenticated
   - Authenticated requests resolve the caller's identity from the bearer token claims
   - tools/call routes through the catalog to a CRM capability under that identity

The upstream identity authority signs the bearer tokens; this service validates their claims.
"""
