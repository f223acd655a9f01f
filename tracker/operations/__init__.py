"""
Operations Layer

Business rules composed on top of the record repository:
- ScoreValidator: Pure validation of a final score pair plus advisory heuristics
- MatchStateMachine: Match lifecycle transitions with audit and stats side effects
"""
