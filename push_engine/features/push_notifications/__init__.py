"""
Push notification feature package.

Everything that decides what to send and delivers it lives in this
slice: domain models, Directory repositories, services, and the job
runners invoked by the worker and the HTTP trigger routes.
"""
