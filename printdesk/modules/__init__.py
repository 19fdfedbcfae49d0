"""
PrintDesk Modules
=================

- admin: OTP login, admin sessions and the admin directory
- orders: order store, lifecycle and the order APIs
- ops: public health endpoint
"""
