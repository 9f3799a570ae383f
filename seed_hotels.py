"""
Script to seed sample hotels into the database.
"""
from travelpi.db.session import SessionLocal, init_db
from travelpi.db.models import Hotel


def seed_hotels():
    init_db()
    db = SessionLocal()
    try:
        hotels_count = db.query(Hotel).count()
        if hotels_count > 0:
            print(f"Database already has {hotels_count} hotels. Skipping seeding.")
            return

        print("Seeding sample hotels...")
        sample_hotels = [
            Hotel(
                name="Harbour View Inn",
                city="Lisbon",
                address="Rua da Prata 12",
                description="Boutique rooms above the old town, five minutes from the river.",
                price_per_night=45.0,
                rating=4.6,
            ),
            Hotel(
                name="Canal House",
                city="Amsterdam",
                address="Keizersgracht 210",
                description="Restored canal house with twelve rooms.",
                price_per_night=80.0,
                rating=4.4,
            ),
            Hotel(
                name="Old Quarter Lodge",
                city="Hanoi",
                address="22 Hang Bac",
                description="Family-run lodge in the Old Quarter.",
                price_per_night=20.0,
                rating=4.2,
            ),
        ]
        db.add_all(sample_hotels)
        db.commit()
        print(f"Seeded {len(sample_hotels)} hotels.")
    except Exception as e:
        print(f"Error seeding hotels: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    seed_hotels()
