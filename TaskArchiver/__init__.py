__red_end_user_data_statement__ = "This cog stores channel settings only; it does not persist data about users."


async def setup(bot):
    from .TaskArchiver import TaskArchiver

    await bot.add_cog(TaskArchiver(bot))
