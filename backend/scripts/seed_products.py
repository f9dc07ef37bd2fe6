#!/usr/bin/env python3
"""
Seed generated products and emit one product-log event per product.

Events from previous seeding runs are deleted first; products are upserted by id.
"""

import argparse
import asyncio
import logging
import os
import random
import sys
from typing import List, Optional

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import models  # noqa: F401,E402
from core.config import settings  # noqa: E402
from core.database import db_manager, initialize_db  # noqa: E402
from core.events.producer import EventProducer  # noqa: E402
from core.events.store import EventStore  # noqa: E402
from core.logging_config import setup_logging  # noqa: E402
from models.product import new_product_id  # noqa: E402
from schemas.product import ProductCreate  # noqa: E402
from services.events import EventService  # noqa: E402
from services.products import ProductService  # noqa: E402

logger = logging.getLogger(__name__)

SOURCE_SEEDER = "ProductSeeder"

CATEGORIES = ['Tecnología', 'Accesorios', 'Ropa', 'Hogar', 'Juguetes', 'Deportes', 'Libros']

# Vocabulary for generated names, per category
PRODUCT_NOUNS = {
    'Tecnología': ['Auriculares', 'Teclado', 'Monitor', 'Altavoz', 'Cargador', 'Tableta'],
    'Accesorios': ['Mochila', 'Cartera', 'Reloj', 'Gafas de sol', 'Cinturón', 'Funda'],
    'Ropa': ['Camiseta', 'Chaqueta', 'Pantalón', 'Sudadera', 'Bufanda', 'Vestido'],
    'Hogar': ['Lámpara', 'Cojín', 'Taza', 'Manta', 'Sartén', 'Estantería'],
    'Juguetes': ['Rompecabezas', 'Peluche', 'Coche teledirigido', 'Juego de mesa', 'Bloques'],
    'Deportes': ['Balón', 'Esterilla', 'Raqueta', 'Mancuernas', 'Botella térmica'],
    'Libros': ['Novela', 'Libro de cocina', 'Guía de viaje', 'Cómic', 'Ensayo'],
}
ADJECTIVES = ['Ergonómico', 'Elegante', 'Práctico', 'Rústico', 'Moderno', 'Artesanal', 'Ligero', 'Genial']
MATERIALS = ['Algodón', 'Acero', 'Madera', 'Plástico', 'Bambú', 'Cuero', 'Vidrio']


def generate_products(count: int, rng: Optional[random.Random] = None) -> List[ProductCreate]:
    rng = rng or random.Random()
    products = []
    for _ in range(count):
        category = rng.choice(CATEGORIES)
        noun = rng.choice(PRODUCT_NOUNS[category])
        adjective = rng.choice(ADJECTIVES)
        material = rng.choice(MATERIALS)
        products.append(ProductCreate(
            product_id=new_product_id(),
            name=f"{noun} {adjective} de {material}",
            description=f"{noun} {adjective.lower()} fabricado en {material.lower()}, ideal para el día a día.",
            price=round(rng.uniform(5, 3000), 2),
            category=category,
        ))
    return products


async def seed_products(count: int, producer: EventProducer, store: EventStore, session_factory) -> int:
    """Upsert `count` generated products, emitting a product-log event for each"""
    logger.info(f"Deleting existing events from source: {SOURCE_SEEDER}...")
    await store.delete_by_source(SOURCE_SEEDER)

    events = EventService(producer, store)
    products = generate_products(count)
    logger.info(f"Seeding {len(products)} products into database...")
    async with session_factory() as db:
        service = ProductService(db)
        for data in products:
            product = await service.upsert_product(data)
            await events.create_and_publish(
                source=SOURCE_SEEDER,
                topic=settings.KAFKA_TOPIC_PRODUCT_LOG,
                key=product.product_id,
                payload=data.model_dump(mode="json", by_alias=True),
                snapshot=product.to_dict(),
            )
    logger.info("Seeding finished successfully.")
    return len(products)


async def main(count: int):
    initialize_db(settings.SQLALCHEMY_DATABASE_URI)
    await db_manager.connect(settings.DB_CONNECT_RETRIES, settings.DB_CONNECT_BACKOFF_MS)
    await db_manager.create_all()
    producer = EventProducer()
    try:
        await producer.connect()
        await seed_products(count, producer, EventStore(db_manager.session_factory), db_manager.session_factory)
    finally:
        await producer.disconnect()
        await db_manager.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed generated products")
    parser.add_argument("--count", type=int, default=settings.SEED_PRODUCT_COUNT)
    args = parser.parse_args()
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(main(args.count))
