import asyncio

from foodday.core.db import get_db
from foodday.repos.mongo import MongoRepo
from foodday.models.schemas import Organization

DEMO_ORGS = [
    Organization(id="ong-centro", name="Banco de Alimentos Centro", location={"lat": -23.5505, "lng": -46.6333}),
    Organization(id="ong-norte", name="Cozinha Solidaria Norte", location={"lat": -23.4800, "lng": -46.6200}),
    Organization(id="ong-sem-local", name="Rede Sem Endereco", location=None),
]

async def main():
    db = get_db()
    repo = MongoRepo(db)
    await repo.ensure_indexes()

    # wipe demo rows if they exist
    await db.organizations.delete_many({"_id": {"$in": [o.id for o in DEMO_ORGS]}})
    for org in DEMO_ORGS:
        await repo.insert_organization(org.to_doc())
    print("Seeded:", ", ".join(o.id for o in DEMO_ORGS))

if __name__ == "__main__":
    asyncio.run(main())
