"""Business logic behind the routers.

Services take a `DocumentStore` and their external clients as arguments and
raise `AppError` subclasses; they never touch FastAPI request objects.
"""
