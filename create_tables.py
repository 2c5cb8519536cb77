"""
Database setup script
Creates every table the API uses. main.py does the same at startup;
run this to prepare a fresh database without starting the server.
"""

from dotenv import load_dotenv
load_dotenv()

from database.database import engine, Base
from database.models import (  # noqa: F401  (registers the tables on Base)
    User, Question, ReviewRequest, ClassificationValidation,
    QuestionSimilarity, QualityMetric, TOSBlueprint, GeneratedTest,
)


def create_tables():
    """Create all tables in the database"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")
    print("\nCreated tables:")
    print("  - users")
    print("  - questions, review_requests, classification_validations")
    print("  - question_similarities, quality_metrics")
    print("  - tos_blueprints, generated_tests")


if __name__ == "__main__":
    create_tables()
