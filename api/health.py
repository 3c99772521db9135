"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json

from src.utils.config import BIDDING_PERIOD_DAYS, EngineConfig


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        """Handle GET request."""
        self.send_response(200)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        response = json.dumps({
            "status": "ok",
            "service": "renobid-backend",
            "store_backend": EngineConfig.STORE_BACKEND,
            "bidding_period_days": BIDDING_PERIOD_DAYS,
        })
        self.wfile.write(response.encode('utf-8'))

    def do_POST(self):
        """Handle POST request (same as GET for health check)."""
        self.do_GET()
