"""
Mock product service implementing the upstream contract consumed by the gateway.
"""

import os
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from shared.logging import get_logger


class ProductPayload(BaseModel):
    """Product fields accepted on create and update."""

    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None


@dataclass
class MockProduct:
    """Mock product record."""
    id: str
    name: str
    price: float
    description: Optional[str]
    created_at: str
    updated_at: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MockProductServer:
    """In-memory stand-in for the document-store backed product service."""

    def __init__(self, port: int = 3847):
        self.port = port
        self.logger = get_logger("mock.products")
        self.app = FastAPI(title="Mock Product Service", version="1.0.0")

        # In-memory storage
        self.products: Dict[str, MockProduct] = {}

        self._setup_routes()

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.get("/api/health")
        async def health():
            return {
                "status": "ok",
                "service": "backend",
                "products": len(self.products),
            }

        @self.app.get("/api/products")
        async def list_products():
            return [asdict(product) for product in self.products.values()]

        @self.app.post("/api/products", status_code=201)
        async def create_product(payload: ProductPayload):
            timestamp = _now()
            product = MockProduct(
                id=uuid.uuid4().hex,
                name=payload.name,
                price=payload.price,
                description=payload.description,
                created_at=timestamp,
                updated_at=timestamp,
            )
            self.products[product.id] = product
            self.logger.info("Product created", product_id=product.id)
            return asdict(product)

        @self.app.get("/api/products/{product_id}")
        async def get_product(product_id: str):
            return asdict(self._get_or_404(product_id))

        @self.app.put("/api/products/{product_id}")
        async def update_product(product_id: str, payload: ProductPayload):
            product = self._get_or_404(product_id)
            product.name = payload.name
            product.price = payload.price
            product.description = payload.description
            product.updated_at = _now()
            return asdict(product)

        @self.app.delete("/api/products/{product_id}", status_code=204)
        async def delete_product(product_id: str):
            self._get_or_404(product_id)
            del self.products[product_id]
            return Response(status_code=204)

    def _get_or_404(self, product_id: str) -> MockProduct:
        product = self.products.get(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product '{product_id}' not found")
        return product


def create_app():
    """Create mock product service application."""
    server = MockProductServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    server = MockProductServer(port=int(os.getenv("BACKEND_PORT", "3847")))
    uvicorn.run(server.app, host="0.0.0.0", port=server.port)
