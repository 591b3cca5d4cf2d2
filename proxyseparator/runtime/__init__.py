"""Upstream probing, system-route dialing, company DNS host routes, stats, events and recovery journal."""