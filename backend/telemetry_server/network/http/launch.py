from telemetry_server import setup

setup.run()

from telemetry_server.network.http.server import server as http_server

# Called from the makefile / uvicorn which actually boots the server
server = http_server


def main():
    import uvicorn

    from telemetry_server import settings

    uvicorn.run(
        'telemetry_server.network.http.launch:server',
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
        reload=settings.IS_LOCAL and settings.DEBUG,
    )


if __name__ == '__main__':
    main()
