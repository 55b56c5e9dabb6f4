"""gateway/ -- The request gatekeeping pipeline.

Every request passes an ordered list of stages before it reaches a route
handler. Which list applies depends on the gateway the request was routed to
("web" or "api"); the lists come from Settings.middleware.

Layer rule: gateway/ imports from auth/ and core/ only. api/ and web/
construct and call the pipeline; gateway/ never imports from them.
"""
