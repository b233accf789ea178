"""
portal package

Proof Pack health scoring, partner revenue settlement and the FastAPI service
that exposes them over Firestore.
"""
