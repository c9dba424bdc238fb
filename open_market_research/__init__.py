"""
Open Market Research back end.

This package contains the server side of the Open Market Research
community platform: AI assisted structuring of raw research notes via
GitHub Models, the study submission wizard rules, study and profile
persistence, and the HTTP API consumed by the web front end.
"""
