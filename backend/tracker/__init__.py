"""
Live tournament tracker for published golf bet recommendations.
Joins live scoring and bookmaker prices to each recommendation, measures price
movement against the publish-time baseline and settles bets as results come in.
"""
