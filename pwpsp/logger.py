# ###################################################################
# Package logger. Handlers are left to the application.
# ###################################################################
import logging

log = logging.getLogger('pwpsp')
log.addHandler(logging.NullHandler())
