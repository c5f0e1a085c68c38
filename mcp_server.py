#!/usr/bin/env python3
"""
MCP Server for the Identity Search API.

Discovers the curated endpoints from the API's OpenAPI spec and exposes them as
tools over stdio. Falls back to built-in schemas when the API isn't reachable
at startup.

Usage:
    python mcp_server.py

Register with an MCP client, e.g.:
    <client> mcp add identity-search -- python /path/to/mcp_server.py
"""
import json
import os
import sys
import logging

import httpx

# Configure logging to stderr (stdout is for MCP protocol)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

API_BASE = os.environ.get("IDSEARCH_API_URL", "http://localhost:8000")
OPENAPI_URL = f"{API_BASE}/openapi.json"

# Curated list of endpoints to expose as tools (path -> tool config)
CURATED_ENDPOINTS = {
    "/api/identity/resolve": {
        "name": "resolve_contact",
        "description": """Resolve a name, nickname or alias ("Mandy", "Mom", "Big J") to a real contact. Checks Contacts, then who you call by that name in your messages, Clay notes and Gmail, and who signs their messages with it.

RETURNS: ranked matches with confidence (high/medium/low), handles (phones/emails) for the best match, example messages, and a one-line summary.

Use the returned handles with search_messages(handle=...) or get_conversation.""",
        "method": "GET"
    },
    "/api/identity/contacts/lookup": {
        "name": "lookup_contact",
        "description": "Look up phones and emails for a name in Contacts only (fast, no message scanning). Use resolve_contact for nicknames that aren't in Contacts.",
        "method": "GET"
    },
    "/api/imessage/search": {
        "name": "search_messages",
        "description": """Search iMessage/SMS history. All terms must match; wrap phrases in double quotes ("flight confirmation"). Filter by contact (name, nickname, phone or email), days_back, after (YYYY-MM-DD), direction (sent/received). Set context_messages to include surrounding messages from the same chat.

Matches are highlighted with **term** in highlighted_text.""",
        "method": "GET"
    },
    "/api/imessage/context": {
        "name": "get_conversation",
        "description": "Get a stretch of conversation with a contact. With 'around', centers on the most recent message containing that text; otherwise returns the most recent messages in chronological order.",
        "method": "GET"
    },
    "/health": {
        "name": "identity_search_health",
        "description": "Check which data sources (Messages, Contacts, Clay, Gmail) are available. Use for debugging empty results.",
        "method": "GET"
    },
}

# Schemas used when the OpenAPI spec can't be loaded
FALLBACK_SCHEMAS = {
    "resolve_contact": {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name, nickname or alias to resolve"},
            "search_all_sources": {"type": "boolean", "description": "Search every source", "default": True}
        },
        "required": ["name"]
    },
    "lookup_contact": {
        "type": "object",
        "properties": {
            "q": {"type": "string", "description": "Name, partial name, nickname or organization"}
        },
        "required": ["q"]
    },
    "search_messages": {
        "type": "object",
        "properties": {
            "q": {"type": "string", "description": "Search terms; quote phrases"},
            "contact": {"type": "string", "description": "Contact name, nickname, phone or email"},
            "days_back": {"type": "integer", "description": "Only the last N days"},
            "after": {"type": "string", "description": "Only after this date (YYYY-MM-DD)"},
            "direction": {"type": "string", "description": "sent or received"},
            "max_results": {"type": "integer", "description": "Max results (1-100)", "default": 20},
            "context_messages": {"type": "integer", "description": "Context messages (0-10)", "default": 0}
        }
    },
    "get_conversation": {
        "type": "object",
        "properties": {
            "contact": {"type": "string", "description": "Contact name, nickname, phone or email"},
            "around": {"type": "string", "description": "Keyword or phrase to center on"},
            "max_messages": {"type": "integer", "description": "Max messages", "default": 30},
            "days_back": {"type": "integer", "description": "Only the last N days"}
        },
        "required": ["contact"]
    },
    "identity_search_health": {
        "type": "object",
        "properties": {}
    },
}


class IdentitySearchMCPServer:
    """MCP Server that exposes Identity Search API endpoints as tools."""

    def __init__(self, client: httpx.Client | None = None, load_spec: bool = True):
        self.client = client or httpx.Client(timeout=60.0)
        self.openapi_spec: dict | None = None
        self.tools: list[dict] = []
        if load_spec:
            self._load_openapi_spec()
        else:
            self._build_tools_fallback()

    def _load_openapi_spec(self):
        """Load OpenAPI spec from the API."""
        try:
            resp = self.client.get(OPENAPI_URL)
            resp.raise_for_status()
            self.openapi_spec = resp.json()
            self._build_tools_from_spec()
            logger.info(f"Loaded OpenAPI spec: {len(self.tools)} tools available")
        except Exception as e:
            logger.warning(f"Could not load OpenAPI spec: {e}. Using curated endpoints only.")
            self._build_tools_fallback()

    def _build_tools_from_spec(self):
        """Build tool definitions from OpenAPI spec."""
        if not self.openapi_spec:
            return

        paths = self.openapi_spec.get("paths", {})

        for path, config in CURATED_ENDPOINTS.items():
            endpoint_spec = paths.get(path, {}).get(config["method"].lower())
            if endpoint_spec is None:
                logger.debug(f"Path {path} not found in OpenAPI spec")
                schema = FALLBACK_SCHEMAS[config["name"]]
            else:
                schema = self._build_input_schema(endpoint_spec)

            self.tools.append({
                "name": config["name"],
                "description": config["description"],
                "inputSchema": schema,
            })

    def _build_input_schema(self, endpoint_spec: dict) -> dict:
        """Build JSON Schema for tool input from an endpoint's query parameters."""
        properties = {}
        required = []

        for param in endpoint_spec.get("parameters", []):
            if param.get("in") != "query":
                continue
            name = param["name"]
            param_schema = param.get("schema", {})
            # Optional params come through as anyOf [type, null]
            param_type = param_schema.get("type")
            if not param_type:
                types = [s.get("type") for s in param_schema.get("anyOf", []) if s.get("type") != "null"]
                param_type = types[0] if types else "string"
            properties[name] = {
                "type": param_type,
                "description": param.get("description", f"Query parameter: {name}")
            }
            if param_schema.get("default") is not None:
                properties[name]["default"] = param_schema["default"]
            if param.get("required"):
                required.append(name)

        schema = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema

    def _build_tools_fallback(self):
        """Build tools from curated list without OpenAPI spec."""
        self.tools = [
            {
                "name": config["name"],
                "description": config["description"],
                "inputSchema": FALLBACK_SCHEMAS[config["name"]],
            }
            for config in CURATED_ENDPOINTS.values()
        ]

    def _call_api(self, tool_name: str, arguments: dict) -> dict:
        """Call the API based on tool name and arguments."""
        endpoint_path = None
        endpoint_config = None
        for path, config in CURATED_ENDPOINTS.items():
            if config["name"] == tool_name:
                endpoint_path, endpoint_config = path, config
                break

        if not endpoint_config:
            return {"error": f"Unknown tool: {tool_name}"}

        url = f"{API_BASE}{endpoint_path}"
        params = {k: v for k, v in arguments.items() if v is not None and v != ""}

        try:
            if endpoint_config["method"] == "GET":
                resp = self.client.get(url, params=params)
            else:
                resp = self.client.post(url, json=params)

            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            return {"error": f"API error {e.response.status_code}: {e.response.text[:200]}"}
        except httpx.RequestError as e:
            return {"error": f"Request failed: {e}"}

    def _format_response(self, tool_name: str, data: dict) -> str:
        """Format API response for human readability."""
        if "error" in data:
            return f"Error: {data['error']}"

        if tool_name == "resolve_contact":
            text = data.get("summary", "")
            matches = data.get("matches", [])
            if matches:
                text += "\n\n**Candidates:**\n"
                for m in matches[:5]:
                    text += f"- **{m.get('name')}** ({m.get('confidence')}, {m.get('message_count', 0)} signals)\n"
                    text += f"  Handles: {', '.join(m.get('handles', []))}\n"
                    text += f"  Why: {m.get('match_reason', '')}\n"
                    for ex in m.get("examples", [])[:2]:
                        text += f"  > {ex.get('text', '')[:120]}\n"
            return text

        elif tool_name == "lookup_contact":
            handles = data.get("handles", [])
            if not handles:
                return f"No contact matching \"{data.get('query', '')}\"."
            name = data.get("name") or data.get("query")
            return f"**{name}**: {', '.join(handles)}"

        elif tool_name == "search_messages":
            if data.get("empty_query") or (data.get("message") and not data.get("results")):
                return data.get("message") or "No messages found."
            results = data.get("results", [])
            if not results:
                return "No messages found."
            text = f"Found {data.get('total_results', len(results))} messages:\n\n"
            for r in results:
                who = "Me" if r.get("is_from_me") else (r.get("contact_name") or r.get("handle") or "Unknown")
                context = r.get("context") or {}
                for c in context.get("before", []):
                    text += f"    {c.get('date', '')[:16]} {'Me' if c.get('is_from_me') else 'Them'}: {c.get('text', '')}\n"
                text += f"- {(r.get('date') or '')[:16]} **{who}**: {r.get('highlighted_text', '')}\n"
                for c in context.get("after", []):
                    text += f"    {c.get('date', '')[:16]} {'Me' if c.get('is_from_me') else 'Them'}: {c.get('text', '')}\n"
            return text

        elif tool_name == "get_conversation":
            conversation = data.get("conversation", [])
            if not conversation:
                return data.get("message") or "No messages found."
            contact = data.get("contact", {})
            name = contact.get("resolved") or contact.get("requested")
            text = f"Conversation with {name} ({len(conversation)} messages):\n\n"
            for m in conversation:
                marker = " <--" if m.get("is_match") else ""
                who = "Me" if m.get("is_from_me") else name
                text += f"{(m.get('date') or '')[:16]} {who}: {m.get('text', '')}{marker}\n"
            return text

        # Default: return formatted JSON
        return json.dumps(data, indent=2)


def send_response(response: dict, request_id: str | int):
    """Send JSON-RPC response to stdout."""
    result = {"jsonrpc": "2.0", "id": request_id, "result": response}
    print(json.dumps(result), flush=True)


def send_error(message: str, request_id: str | int, code: int = -32000):
    """Send JSON-RPC error to stdout."""
    error = {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
    print(json.dumps(error), flush=True)


def main():
    """Main MCP server loop."""
    server = IdentitySearchMCPServer()

    for line in sys.stdin:
        request_id = None
        try:
            request = json.loads(line.strip())
            method = request.get("method")
            request_id = request.get("id")

            if method == "initialize":
                send_response({
                    "protocolVersion": "2024-11-05",
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "identity-search", "version": "0.1.0"}
                }, request_id)

            elif method == "notifications/initialized":
                pass  # No response needed

            elif method == "tools/list":
                send_response({"tools": server.tools}, request_id)

            elif method == "tools/call":
                params = request.get("params", {})
                tool_name = params.get("name")
                arguments = params.get("arguments", {})

                result = server._call_api(tool_name, arguments)
                formatted = server._format_response(tool_name, result)

                send_response({
                    "content": [{"type": "text", "text": formatted}]
                }, request_id)

            else:
                if request_id is not None:
                    send_error(f"Unknown method: {method}", request_id)

        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error: {e}")
        except Exception as e:
            logger.error(f"Error handling request: {e}")
            if request_id is not None:
                send_error(str(e), request_id)


if __name__ == "__main__":
    main()
