from __future__ import annotations

from typing import List

from .models import Team

# Demo roster used when the backend can't be reached at startup
SEED_TEAMS: List[Team] = [
    Team(
        id="t1",
        name="Code Wizards",
        members=("Alice Johnson", "Bob Smith", "Charlie Brown"),
        project="AI-Powered Waste Management System",
        institution="Delhi Technical University",
    ),
    Team(
        id="t2",
        name="Binary Beasts",
        members=("Diana Prince", "Bruce Wayne", "Clark Kent"),
        project="Smart Agriculture Monitoring",
        institution="IIT Roorkee",
    ),
    Team(
        id="t3",
        name="Tech Titans",
        members=("Elon Mask", "Steve Job", "Bill Get"),
        project="Blockchain for Supply Chain",
        institution="Dev Bhoomi Uttarakhand University",
    ),
    Team(
        id="t4",
        name="Quantum Quips",
        members=("Priya Singh", "Rahul Sharma", "Neha Kumar"),
        project="AR Navigation for Campus",
        institution="Dev Bhoomi Uttarakhand University",
    ),
    Team(
        id="t5",
        name="Data Dragons",
        members=("Amit Patel", "Sanjay Gupta", "Kiran Rao"),
        project="ML-based Disease Prediction",
        institution="IIIT Delhi",
    ),
]
